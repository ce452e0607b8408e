"""Tests for the persisted state models (MemberRecord / StateDocument)."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from family_rewards.models.state import MemberRecord, StateDocument, reward_key


def test_member_record_defaults_are_zero() -> None:
    record = MemberRecord()
    assert record.stars == 0
    assert record.task_index == 0
    assert record.reward_index == 0
    assert record.redemptions == {}


def test_member_record_wire_format_is_camel_case() -> None:
    record = MemberRecord(stars=3, task_index=1, reward_index=2, redemptions={"reward:0": 1})
    assert record.model_dump(by_alias=True) == {
        "stars": 3,
        "taskIndex": 1,
        "rewardIndex": 2,
        "redemptions": {"reward:0": 1},
    }


def test_negative_stars_rejected() -> None:
    with pytest.raises(ValidationError):
        MemberRecord(stars=-1)


def test_zero_redemption_counts_are_dropped() -> None:
    """The mapping only ever holds positive counts."""
    record = MemberRecord.model_validate({"redemptions": {"reward:0": 0, "reward:1": 2}})
    assert record.redemptions == {"reward:1": 2}


def test_negative_redemption_count_rejected() -> None:
    with pytest.raises(ValidationError):
        MemberRecord.model_validate({"redemptions": {"reward:0": -1}})


def test_legacy_integer_members_are_migrated() -> None:
    """First-release documents stored a bare count per member."""
    document = StateDocument.model_validate({"members": {"aaron": 7, "liz": 0}})

    assert document.members["aaron"] == MemberRecord(stars=7)
    assert document.members["liz"].stars == 0
    assert document.members["aaron"].redemptions == {}


def test_mixed_legacy_and_current_members() -> None:
    document = StateDocument.model_validate(
        {"members": {"old": 4, "new": {"stars": 2, "taskIndex": 1, "rewardIndex": 0, "redemptions": {}}}}
    )
    assert document.members["old"].stars == 4
    assert document.members["new"].task_index == 1


def test_member_creates_default_record() -> None:
    document = StateDocument()
    record = document.member("zoe")
    assert record == MemberRecord()
    assert "zoe" in document.members
    assert document.member("zoe") is record


def test_to_wire_round_trips() -> None:
    document = StateDocument()
    document.member("zoe").stars = 5
    assert StateDocument.model_validate(document.to_wire()) == document
    assert document.to_wire() == {
        "members": {"zoe": {"stars": 5, "taskIndex": 0, "rewardIndex": 0, "redemptions": {}}}
    }


def test_reward_key_format() -> None:
    assert reward_key(0) == "reward:0"
    assert reward_key(3) == "reward:3"
