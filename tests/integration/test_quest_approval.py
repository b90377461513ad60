"""
Integration tests for quest approval.

Tests payout, level-up, audit logging, exactly-once semantics under
sequential and concurrent approval, and rollback on failure.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from chorequest.database.models import (
    Character,
    CharacterClass,
    QuestDifficulty,
    QuestInstance,
    QuestStatus,
    TransactionType,
    UserRole,
)
from chorequest.exceptions import (
    AlreadyApprovedError,
    ApprovalConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from chorequest.services.authorization import Actor
from chorequest.services.engine import ChoreQuestEngine
from chorequest.services.event_bus import EventBus
from chorequest.services.reward_service import RewardBundle
from chorequest.services.transaction_logger import TransactionLogger
from tests.helpers import audit_entries, guardian_of, hero, reload

NOW = datetime(2025, 1, 16, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine() -> ChoreQuestEngine:
    return ChoreQuestEngine()


@pytest.mark.asyncio
class TestApproveQuest:
    """Test a single approval end to end."""

    async def test_pays_rewards_and_levels_up(self, seed, engine):
        """MEDIUM quest for a MAGE pays 1.5 x 1.2 XP and levels up."""
        family = await seed.family()
        ada = await seed.character(family, character_class=CharacterClass.MAGE)
        quest = await seed.quest(family, ada, difficulty=QuestDifficulty.MEDIUM, xp_reward=100, gold_reward=50)

        result = await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        assert result.rewards == RewardBundle(xp=180, gold=75)
        assert result.base_rewards == RewardBundle(xp=100, gold=50)
        assert result.level_up.leveled_up is True
        assert result.level_up.new_level == 2

        character = await reload(Character, ada.id)
        assert character.xp == 180
        assert character.gold == 75
        assert character.level == 2
        assert character.last_level_up == datetime(2025, 1, 16, 9, 0)

    async def test_marks_quest_approved(self, seed, engine):
        """Status, approved_at and version are updated."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada, completed_at=datetime(2025, 1, 15, 12, 0))

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        stored = await reload(QuestInstance, quest.id)
        assert stored.status == QuestStatus.APPROVED
        assert stored.approved_at == datetime(2025, 1, 16, 9, 0)
        assert stored.completed_at == datetime(2025, 1, 15, 12, 0)
        assert stored.version == quest.version + 1
        assert stored.streak_count is None

    async def test_approved_at_never_precedes_completion(self, seed, engine):
        """A clock behind completed_at still stamps approval at or after it."""
        family = await seed.family()
        ada = await seed.character(family)
        completed = datetime(2025, 1, 16, 10, 0)
        quest = await seed.quest(family, ada, completed_at=completed)

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        stored = await reload(QuestInstance, quest.id)
        assert stored.approved_at >= stored.completed_at

    async def test_writes_one_audit_entry(self, seed, engine):
        """A QUEST_REWARD entry records deltas and multipliers."""
        family = await seed.family()
        ada = await seed.character(family, character_class=CharacterClass.KNIGHT)
        quest = await seed.quest(family, ada, difficulty=QuestDifficulty.HARD, xp_reward=100, gold_reward=50)

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        entries = await audit_entries(quest.id, TransactionType.QUEST_REWARD)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.user_id == ada.user_id
        assert entry.character_id == ada.id
        assert entry.xp_change == 210
        assert entry.gold_change == 105
        assert entry.context == "approve_quest"
        assert entry.details["difficulty"] == "HARD"
        assert entry.details["approved_by"] == "guardian-1"
        assert entry.details["base_rewards"] == {"xp": 100, "gold": 50, "gems": 0, "honor": 0}

    async def test_publishes_events_after_commit(self, seed, engine):
        """quest_approved and character_leveled_up are published."""
        received = []
        EventBus.subscribe("quest_approved", lambda data: received.append(("approved", data)))
        EventBus.subscribe("character_leveled_up", lambda data: received.append(("level", data)))

        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada, xp_reward=60)

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        assert [name for name, _ in received] == ["approved", "level"]
        assert received[0][1]["quest_id"] == quest.id
        assert received[1][1]["new_level"] == 2


@pytest.mark.asyncio
class TestApprovalRejections:
    """Test approvals that must not pay out."""

    async def test_second_approval_raises(self, seed, engine):
        """Re-approving pays nothing and raises AlreadyApprovedError."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)
        with pytest.raises(AlreadyApprovedError):
            await engine.approve_quest(quest.id, guardian_of(family), now=NOW + timedelta(minutes=1))

        character = await reload(Character, ada.id)
        assert character.xp == 100
        assert len(await audit_entries(quest.id)) == 1

    async def test_non_guardian_cannot_approve(self, seed, engine):
        """A hero approving their own quest is refused, nothing changes."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        with pytest.raises(UnauthorizedError):
            await engine.approve_quest(quest.id, hero(ada), now=NOW)

        assert (await reload(QuestInstance, quest.id)).status == QuestStatus.COMPLETED
        assert (await reload(Character, ada.id)).xp == 0

    async def test_guardian_of_other_family_cannot_approve(self, seed, engine):
        """Guardian role is scoped to the family."""
        family = await seed.family()
        other = await seed.family(name="Neighbors")
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        with pytest.raises(UnauthorizedError):
            await engine.approve_quest(quest.id, guardian_of(other), now=NOW)

    async def test_unauthorized_checked_before_state(self, seed, engine):
        """An unauthorized actor learns nothing about the quest's state."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada, status=QuestStatus.IN_PROGRESS)

        with pytest.raises(UnauthorizedError):
            await engine.approve_quest(quest.id, hero(ada), now=NOW)

    async def test_in_progress_cannot_be_approved(self, seed, engine):
        """Approval requires COMPLETED."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada, status=QuestStatus.IN_PROGRESS)

        with pytest.raises(InvalidStateTransitionError):
            await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

    async def test_unassigned_quest_cannot_be_approved(self, seed, engine):
        """A COMPLETED quest without a performer is rejected."""
        family = await seed.family()
        quest = await seed.quest(family, None)

        with pytest.raises(ValidationError):
            await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        assert (await reload(QuestInstance, quest.id)).status == QuestStatus.COMPLETED

    async def test_missing_quest(self, seed, engine):
        """Unknown quest IDs raise NotFoundError."""
        family = await seed.family()
        with pytest.raises(NotFoundError):
            await engine.approve_quest("does-not-exist", guardian_of(family), now=NOW)


@pytest.mark.asyncio
class TestExactlyOnce:
    """Test concurrency and atomicity guarantees."""

    async def test_concurrent_approvals_pay_once(self, seed, engine):
        """Two simultaneous approvals: one succeeds, one is refused, one payout."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada, xp_reward=100, gold_reward=40)
        second_guardian = Actor(user_id="guardian-2", role=UserRole.GUILD_MASTER, family_id=family.id)

        outcomes = await asyncio.gather(
            engine.approve_quest(quest.id, guardian_of(family), now=NOW),
            ChoreQuestEngine().approve_quest(quest.id, second_guardian, now=NOW),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if not isinstance(o, BaseException)]
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (AlreadyApprovedError, ApprovalConflictError))

        character = await reload(Character, ada.id)
        assert character.xp == 100
        assert character.gold == 40
        assert len(await audit_entries(quest.id, TransactionType.QUEST_REWARD)) == 1

    async def test_audit_failure_rolls_back_everything(self, seed, engine, mocker):
        """If the audit entry cannot be written, the approval never happened."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        mocker.patch.object(
            TransactionLogger, "log_transaction", side_effect=RuntimeError("audit store unavailable")
        )
        with pytest.raises(RuntimeError):
            await engine.approve_quest(quest.id, guardian_of(family), now=NOW)
        mocker.stopall()

        stored = await reload(QuestInstance, quest.id)
        assert stored.status == QuestStatus.COMPLETED
        assert stored.approved_at is None
        assert stored.version == quest.version
        character = await reload(Character, ada.id)
        assert character.xp == 0
        assert character.gold == 0
        assert await audit_entries(quest.id) == []

    async def test_retry_after_rollback_succeeds(self, seed, engine, mocker):
        """A rolled-back approval can be retried and pays once."""
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        mocker.patch.object(TransactionLogger, "log_transaction", side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await engine.approve_quest(quest.id, guardian_of(family), now=NOW)
        mocker.stopall()

        result = await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        assert result.rewards.xp == 100
        assert (await reload(Character, ada.id)).xp == 100
        assert len(await audit_entries(quest.id)) == 1

    async def test_listener_failure_does_not_undo_approval(self, seed, engine):
        """Events fire after commit; a broken listener cannot roll back a payout."""
        def broken(data):
            raise RuntimeError("push service down")

        EventBus.subscribe("quest_approved", broken)
        family = await seed.family()
        ada = await seed.character(family)
        quest = await seed.quest(family, ada)

        await engine.approve_quest(quest.id, guardian_of(family), now=NOW)

        assert (await reload(QuestInstance, quest.id)).status == QuestStatus.APPROVED
