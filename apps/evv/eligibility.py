"""
Eligibility gate - may this caregiver clock in to this visit at all?

Runs before any verification and is side-effect free; the clock service turns a
BLOCK into ``EligibilityError`` before a TimeEntry exists.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from .constants import (
    ELIGIBILITY_ALLOW,
    ELIGIBILITY_ALLOW_WITH_WARNING,
    ELIGIBILITY_BLOCK,
    VALID_CREDENTIAL_STATUSES,
)
from .rules import JurisdictionRules


@dataclass(frozen=True)
class CredentialSnapshot:
    credential_type: str
    status: str
    expires_on: Optional[date] = None


@dataclass(frozen=True)
class SkillOverride:
    """A coordinator's decision to staff a visit despite a skill gap."""

    user: object
    reason: str


@dataclass
class EligibilityDecision:
    outcome: str
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    citations: List[str] = field(default_factory=list)
    skill_override_by: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.outcome == ELIGIBILITY_BLOCK

    def as_dict(self):
        return {
            'outcome': self.outcome,
            'reasons': self.reasons,
            'warnings': self.warnings,
            'citations': self.citations,
            'skill_override_by': self.skill_override_by,
        }


def _can_override_skills(user) -> bool:
    if user is None:
        return False
    has_role = getattr(user, 'has_role', None)
    return bool(has_role and has_role('COORDINATOR'))


def check_eligibility(
    credentials: Iterable[CredentialSnapshot],
    rules: JurisdictionRules,
    caregiver_skills: Iterable[str] = (),
    required_skills: Iterable[str] = (),
    skill_override: Optional[SkillOverride] = None,
    as_of: Optional[date] = None,
) -> EligibilityDecision:
    """
    Evaluate required credentials and skills.

    Expired credentials always block; a credential inside the warning window
    only warns. A skill gap blocks unless a coordinator (or higher) has
    overridden it, in which case it becomes a warning attributed to them.
    """
    as_of = as_of or date.today()
    warning_horizon = as_of + timedelta(days=rules.credential_warning_days)

    by_type = {}
    for credential in credentials:
        by_type.setdefault(credential.credential_type.upper(), []).append(credential)

    reasons: List[str] = []
    warnings: List[str] = []
    citations: List[str] = []

    for requirement in rules.required_credentials:
        held = by_type.get(requirement.code.upper(), [])
        usable = [
            c for c in held
            if c.status in VALID_CREDENTIAL_STATUSES and (c.expires_on is None or c.expires_on >= as_of)
        ]

        if not usable:
            if not held:
                problem = 'missing'
            elif any(c.expires_on is not None and c.expires_on < as_of for c in held):
                problem = 'expired'
            else:
                problem = 'not active'
            reasons.append(f"{requirement.label} is {problem} ({requirement.citation})")
            citations.append(requirement.citation)
            continue

        latest_expiry = _latest_expiry(usable)
        if latest_expiry is not None and latest_expiry <= warning_horizon:
            days_left = (latest_expiry - as_of).days
            warnings.append(f"{requirement.label} expires in {days_left} days ({requirement.citation})")

    skill_override_by = None
    missing_skills = _missing_skills(caregiver_skills, required_skills)
    if missing_skills:
        message = f"Caregiver lacks required skills: {', '.join(missing_skills)}"
        if skill_override is not None and _can_override_skills(skill_override.user):
            skill_override_by = str(getattr(skill_override.user, 'pk', skill_override.user))
            warnings.append(f"{message}; overridden by coordinator: {skill_override.reason}")
        else:
            reasons.append(message)

    if reasons:
        outcome = ELIGIBILITY_BLOCK
    elif warnings:
        outcome = ELIGIBILITY_ALLOW_WITH_WARNING
    else:
        outcome = ELIGIBILITY_ALLOW

    return EligibilityDecision(
        outcome=outcome,
        reasons=reasons,
        warnings=warnings,
        citations=citations,
        skill_override_by=skill_override_by,
    )


def _latest_expiry(credentials) -> Optional[date]:
    if any(c.expires_on is None for c in credentials):
        return None
    return max(c.expires_on for c in credentials)


def _missing_skills(caregiver_skills, required_skills) -> Tuple[str, ...]:
    held = {s.strip().upper() for s in caregiver_skills if s}
    return tuple(s for s in required_skills if s and s.strip().upper() not in held)
