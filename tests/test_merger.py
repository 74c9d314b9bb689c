from itertools import permutations

import pytest

from personfinder.models.person import Candidate, SocialLinks, SourceRef
from personfinder.services.merger import (
    identity_key,
    merge_candidates,
    merge_pair,
    normalize_profile_link,
)


def candidate(name="Jane Doe", **fields):
    return Candidate(full_name=name, **fields)


class TestNormalizeProfileLink:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.linkedin.com/in/jane-doe?trk=public_profile",
            "http://linkedin.com/in/jane-doe/",
            "LINKEDIN.COM/in/Jane-Doe#about",
        ],
    )
    def test_variants_collapse(self, url):
        assert normalize_profile_link(url) == "linkedin.com/in/jane-doe"

    def test_empty(self):
        assert normalize_profile_link(None) == ""


class TestIdentityKey:
    def test_profile_link_first(self):
        c = candidate(
            social=SocialLinks(linkedin="https://www.linkedin.com/in/jane-doe/"),
            emails=["jane@example.com"],
        )
        assert identity_key(c) == "profile:linkedin.com/in/jane-doe"

    def test_profile_from_source_url(self):
        c = candidate(
            sources=[
                SourceRef(provider="brave", url="https://example.com/jane"),
                SourceRef(provider="brave", url="https://uk.linkedin.com/in/jane-doe?x=1"),
            ]
        )
        assert identity_key(c) == "profile:uk.linkedin.com/in/jane-doe"

    def test_email_then_phone(self):
        assert identity_key(candidate(emails=[" Jane@Example.com"])) == "email:jane@example.com"
        assert identity_key(candidate(phones=["+1 (555) 123-4567"])) == "phone:15551234567"

    def test_name_and_employer(self):
        c = candidate(name="  Jane   DOE ", employers=["Mercy Hospital", "Acme"])
        assert identity_key(c) == "name_emp:jane doe|mercy hospital"

    def test_name_only(self):
        assert identity_key(candidate()) == "name:jane doe"


class TestMergePair:
    def test_scalars_keep_first_non_empty(self):
        existing = candidate(first_name=None, age=None, gender="female")
        incoming = candidate(name="Janet Doe", first_name="Jane", age=34, gender="other")

        merged = merge_pair(existing, incoming)

        assert merged.full_name == "Jane Doe"
        assert merged.first_name == "Jane"
        assert merged.age == 34
        assert merged.gender == "female"

    def test_lists_union_case_insensitively(self):
        merged = merge_pair(
            candidate(professions=["Nurse"], locations=["Boston, USA"]),
            candidate(professions=["nurse", "Educator"], locations=["Denver, USA"]),
        )
        assert merged.professions == ["Nurse", "Educator"]
        assert merged.locations == ["Boston, USA", "Denver, USA"]

    def test_social_fills_empty_slots_only(self):
        merged = merge_pair(
            candidate(social=SocialLinks(linkedin="https://linkedin.com/in/a")),
            candidate(
                social=SocialLinks(
                    linkedin="https://linkedin.com/in/b", twitter="https://twitter.com/jd"
                )
            ),
        )
        assert merged.social.linkedin == "https://linkedin.com/in/a"
        assert merged.social.twitter == "https://twitter.com/jd"

    def test_source_note_is_filled(self):
        merged = merge_pair(
            candidate(sources=[SourceRef(provider="tavily", url="https://a.example")]),
            candidate(
                sources=[SourceRef(provider="tavily", url="https://a.example", note="bio")]
            ),
        )
        assert [(s.url, s.note) for s in merged.sources] == [("https://a.example", "bio")]

    def test_confidence_is_max(self):
        assert merge_pair(candidate(confidence=0.3), candidate(confidence=0.8)).confidence == 0.8
        assert merge_pair(candidate(confidence=0.9), candidate(confidence=0.1)).confidence == 0.9


def test_tracking_query_profiles_merge():
    candidates = [
        candidate(
            professions=["Nurse"],
            social=SocialLinks(linkedin="https://www.linkedin.com/in/jane-doe?trk=abc"),
        ),
        candidate(name="John Roe", emails=["john@example.com"]),
        candidate(
            professions=["Clinical Educator"],
            social=SocialLinks(linkedin="linkedin.com/in/jane-doe/"),
        ),
        candidate(name="Jane Doe", employers=["Acme"]),
    ]

    merged = merge_candidates(candidates)

    assert [c.full_name for c in merged] == ["Jane Doe", "John Roe", "Jane Doe"]
    assert merged[0].professions == ["Nurse", "Clinical Educator"]
    assert merged[2].employers == ["Acme"]


def test_list_fields_do_not_depend_on_order():
    group = [
        candidate(
            professions=["Nurse"], locations=["Boston, USA"], emails=["jane@example.com"],
            confidence=0.4,
        ),
        candidate(
            professions=["NURSE", "Educator"], employers=["Mercy"],
            emails=["jane@example.com"], confidence=0.9,
        ),
        candidate(
            professions=["Researcher"], locations=["boston, usa", "Denver, USA"],
            emails=["jane@example.com"], education=["MIT"], confidence=0.2,
        ),
    ]

    def fingerprint(entity):
        return {
            field: sorted(v.lower() for v in getattr(entity, field))
            for field in ("professions", "employers", "education", "emails", "locations")
        }

    results = []
    for order in permutations(group):
        merged = merge_candidates(order)
        assert len(merged) == 1
        results.append((fingerprint(merged[0]), merged[0].confidence))

    assert all(r == results[0] for r in results)
    assert results[0][1] == 0.9
