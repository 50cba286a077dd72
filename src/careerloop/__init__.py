"""careerloop: weekly career tasks, evidence verification and scoring."""

__version__ = "0.1.0"
