from datetime import date, timedelta
from types import SimpleNamespace

from django.test import SimpleTestCase

from apps.evv.constants import (
    CREDENTIAL_STATUS_ACTIVE,
    CREDENTIAL_STATUS_CLEARED,
    CREDENTIAL_STATUS_PENDING,
    ELIGIBILITY_ALLOW,
    ELIGIBILITY_ALLOW_WITH_WARNING,
    ELIGIBILITY_BLOCK,
)
from apps.evv.eligibility import CredentialSnapshot, SkillOverride, check_eligibility
from apps.evv.rules import JurisdictionKey, load_rule_table

TODAY = date(2026, 3, 2)


def user_with_role(*roles):
    return SimpleNamespace(pk='user-1', has_role=lambda role: role in roles)


class EligibilityTests(SimpleTestCase):
    def setUp(self):
        self.texas = load_rule_table().resolve(JurisdictionKey('TX', 'MEDICAID', 'PCS'))
        self.valid = [
            CredentialSnapshot('BACKGROUND_SCREENING', CREDENTIAL_STATUS_CLEARED, TODAY + timedelta(days=365)),
            CredentialSnapshot('HHSC_ORIENTATION', CREDENTIAL_STATUS_ACTIVE, None),
        ]

    def test_all_credentials_valid(self):
        decision = check_eligibility(self.valid, self.texas, as_of=TODAY)
        self.assertEqual(decision.outcome, ELIGIBILITY_ALLOW)
        self.assertEqual(decision.reasons, [])

    def test_missing_credential_blocks_with_citation(self):
        decision = check_eligibility(self.valid[1:], self.texas, as_of=TODAY)
        self.assertEqual(decision.outcome, ELIGIBILITY_BLOCK)
        self.assertIn('missing', decision.reasons[0])
        self.assertEqual(decision.citations, ['Texas Human Resources Code §40.053, 26 TAC §558.259'])

    def test_expired_credential_blocks(self):
        credentials = [
            CredentialSnapshot('BACKGROUND_SCREENING', CREDENTIAL_STATUS_ACTIVE, TODAY - timedelta(days=1)),
            self.valid[1],
        ]
        decision = check_eligibility(credentials, self.texas, as_of=TODAY)
        self.assertTrue(decision.is_blocked)
        self.assertIn('expired', decision.reasons[0])

    def test_pending_credential_blocks(self):
        credentials = [CredentialSnapshot('BACKGROUND_SCREENING', CREDENTIAL_STATUS_PENDING), self.valid[1]]
        decision = check_eligibility(credentials, self.texas, as_of=TODAY)
        self.assertTrue(decision.is_blocked)
        self.assertIn('not active', decision.reasons[0])

    def test_expiring_soon_warns(self):
        credentials = [
            CredentialSnapshot('BACKGROUND_SCREENING', CREDENTIAL_STATUS_ACTIVE, TODAY + timedelta(days=10)),
            self.valid[1],
        ]
        decision = check_eligibility(credentials, self.texas, as_of=TODAY)
        self.assertEqual(decision.outcome, ELIGIBILITY_ALLOW_WITH_WARNING)
        self.assertIn('expires in 10 days', decision.warnings[0])

    def test_expiring_on_the_day_is_still_valid(self):
        credentials = [CredentialSnapshot('BACKGROUND_SCREENING', CREDENTIAL_STATUS_ACTIVE, TODAY), self.valid[1]]
        decision = check_eligibility(credentials, self.texas, as_of=TODAY)
        self.assertFalse(decision.is_blocked)

    def test_missing_skill_blocks(self):
        decision = check_eligibility(
            self.valid, self.texas, caregiver_skills=['lift'], required_skills=['TRACH_CARE'], as_of=TODAY,
        )
        self.assertTrue(decision.is_blocked)
        self.assertIn('TRACH_CARE', decision.reasons[0])

    def test_skill_match_is_case_insensitive(self):
        decision = check_eligibility(
            self.valid, self.texas, caregiver_skills=['trach_care'], required_skills=['TRACH_CARE'], as_of=TODAY,
        )
        self.assertEqual(decision.outcome, ELIGIBILITY_ALLOW)

    def test_coordinator_skill_override_warns(self):
        override = SkillOverride(user=user_with_role('COORDINATOR'), reason='Only available caregiver')
        decision = check_eligibility(
            self.valid, self.texas, required_skills=['TRACH_CARE'], skill_override=override, as_of=TODAY,
        )
        self.assertEqual(decision.outcome, ELIGIBILITY_ALLOW_WITH_WARNING)
        self.assertEqual(decision.skill_override_by, 'user-1')

    def test_caregiver_cannot_override_skills(self):
        override = SkillOverride(user=user_with_role('CAREGIVER'), reason='I can do it')
        decision = check_eligibility(
            self.valid, self.texas, required_skills=['TRACH_CARE'], skill_override=override, as_of=TODAY,
        )
        self.assertTrue(decision.is_blocked)

    def test_skill_override_does_not_cover_credentials(self):
        override = SkillOverride(user=user_with_role('COORDINATOR'), reason='urgent')
        decision = check_eligibility([], self.texas, skill_override=override, as_of=TODAY)
        self.assertTrue(decision.is_blocked)

    def test_unconfigured_jurisdiction_blocks(self):
        rules = load_rule_table().resolve(JurisdictionKey('WY'))
        decision = check_eligibility(self.valid, rules, as_of=TODAY)
        self.assertTrue(decision.is_blocked)
        self.assertIn('No EVV rule configuration', decision.citations[0])
