"""Built-in verification rules, one module per track."""

from ..rule_engine import RuleRegistry
from .career import ResumeRule, build_career_rules, register_career_rules
from .github import build_github_rules, register_github_rules
from .job_hunting import build_job_hunting_rules, register_job_hunting_rules
from .linkedin import build_linkedin_rules, register_linkedin_rules


def register_default_rules(registry: RuleRegistry) -> RuleRegistry:
    register_linkedin_rules(registry)
    register_github_rules(registry)
    register_career_rules(registry)
    register_job_hunting_rules(registry)
    return registry


__all__ = [
    "ResumeRule",
    "build_career_rules",
    "build_github_rules",
    "build_job_hunting_rules",
    "build_linkedin_rules",
    "register_career_rules",
    "register_default_rules",
    "register_github_rules",
    "register_job_hunting_rules",
    "register_linkedin_rules",
]
