"""
Repository Tests
Query construction for the token ledger plus the MongoDB stores against
mocked Motor collections.
"""
import datetime as dt
import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import DuplicateKeyError

from leadify.models.bant import BANTRecord
from leadify.models.lead import LeadRecord
from leadify.models.scoring_config import ConfigInvalid, Tier
from leadify.models.token_usage import GroupBy, OperationType, UsageFilter
from leadify.repositories import (
    AgentConfigRepository,
    ConversationRepository,
    LeadRepository,
    TokenUsageRepository,
)
from leadify.repositories.token_usage import build_match, group_expression


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="64f000000000000000000001"))
    collection.replace_one = AsyncMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    collection.find_one = AsyncMock(return_value=None)
    return collection


@pytest.fixture
def database(collection):
    database = MagicMock()
    database.__getitem__.return_value = collection
    return database


class TestBuildMatch:

    def test_half_open_window(self):
        start = dt.datetime(2026, 10, 1, tzinfo=dt.UTC)
        end = dt.datetime(2026, 10, 2, tzinfo=dt.UTC)

        match = build_match(UsageFilter(start=start, end=end))

        assert match == {"created_at": {"$gte": start, "$lt": end}}

    def test_equality_filters(self):
        match = build_match(UsageFilter(
            operation_type=OperationType.CHAT_REPLY, model="openai:gpt-4o-mini", conversation_id="c-1"
        ))

        assert match == {
            "operation_type": "chat_reply",
            "model": "openai:gpt-4o-mini",
            "conversation_id": "c-1",
        }

    def test_organization_agents(self):
        assert build_match(UsageFilter(), ["agent-7", "agent-8"]) == {"agent_id": {"$in": ["agent-7", "agent-8"]}}

    def test_agent_filter_inside_organization(self):
        match = build_match(UsageFilter(agent_id="agent-8"), ["agent-7", "agent-8"])

        assert match == {"agent_id": {"$in": ["agent-8"]}}

    def test_agent_outside_organization_matches_nothing(self):
        match = build_match(UsageFilter(agent_id="agent-9"), ["agent-7"])

        assert match == {"agent_id": {"$in": []}}


class TestGroupExpression:

    def test_field_groups(self):
        assert group_expression(GroupBy.OPERATION_TYPE) == "$operation_type"
        assert group_expression(GroupBy.AGENT) == "$agent_id"

    def test_hour_bucket(self):
        expression = group_expression(GroupBy.HOUR)["$dateToString"]

        assert expression["date"] == "$created_at"
        assert expression["timezone"] == "UTC"

    def test_organization_is_not_a_stored_field(self):
        with pytest.raises(ValueError):
            group_expression(GroupBy.ORGANIZATION)


class TestTokenUsageRepository:

    async def test_duplicate_insert_is_a_no_op(self, database, collection, gateway, fake_agent, ledger):
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))
        repository = TokenUsageRepository(database)
        await gateway.invoke(OperationType.CHAT_REPLY, fake_agent("ok"), "hello")
        [record] = await ledger.records()

        assert await repository.insert(record) == record.record_id


class TestConversationRepository:

    async def test_commit_writes_unarchived(self, database, collection, make_state):
        repository = ConversationRepository(database)

        assert await repository.commit(make_state()) is True

        filter_dict = collection.replace_one.call_args[0][0]
        assert filter_dict == {"conversation_id": "c-1", "archived": {"$ne": True}}
        assert collection.replace_one.call_args.kwargs["upsert"] is True

    async def test_commit_on_archived_is_refused(self, database, collection, make_state):
        collection.replace_one = AsyncMock(side_effect=DuplicateKeyError("conversation_id"))
        repository = ConversationRepository(database)

        assert await repository.commit(make_state()) is False

    async def test_archive_unknown(self, database, collection):
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))

        assert await ConversationRepository(database).archive("missing") is False

    async def test_get_round_trips_document(self, database, collection, make_state):
        repository = ConversationRepository(database)
        state = make_state()
        doc = repository._to_doc(state)
        collection.find_one = AsyncMock(return_value={"_id": "64f000000000000000000002", **doc})

        fetched = await repository.get("c-1")

        assert fetched.conversation_id == "c-1"
        assert fetched.id == "64f000000000000000000002"


class TestLeadRepository:

    @staticmethod
    def lead() -> LeadRecord:
        return LeadRecord(
            conversation_id="c-1", agent_id="agent-7", user_id="u-1",
            bant=BANTRecord(), score=10, tier=Tier.COLD,
        )

    async def test_emit_returns_inserted_id(self, database):
        assert await LeadRepository(database).emit(self.lead()) == "64f000000000000000000001"

    async def test_duplicate_emit_returns_existing(self, database, collection):
        repository = LeadRepository(database)
        existing = repository._to_doc(self.lead())
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("dup"))
        collection.find_one = AsyncMock(return_value={"_id": "64f000000000000000000009", **existing})

        assert await repository.emit(self.lead()) == "64f000000000000000000009"
        assert collection.find_one.call_args[0][0] == {"conversation_id": "c-1", "qualification_round": 0}


class TestAgentConfigRepository:

    async def test_missing_profile_uses_default(self, database):
        profile = await AgentConfigRepository(database).get_profile("agent-x")

        assert profile.agent_id == "agent-x"
        assert profile.scoring_config.thresholds.hot == 70

    async def test_invalid_stored_profile(self, database, collection):
        collection.find_one = AsyncMock(return_value={
            "agent_id": "agent-7",
            "scoring_config": {"thresholds": {"hot": 10, "warm": 50}},
        })

        with pytest.raises(ConfigInvalid):
            await AgentConfigRepository(database).get_profile("agent-7")

    async def test_put_rejects_invalid_profile(self, database, collection):
        with pytest.raises(ConfigInvalid):
            await AgentConfigRepository(database).put({"agent_id": "agent-7", "scoring_config": {"weights": {}}})

        collection.replace_one.assert_not_called()

    async def test_agents_for_organization(self, database, collection):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[{"agent_id": "agent-7"}, {"agent_id": "agent-8"}])
        collection.find = MagicMock(return_value=cursor)

        agents = await AgentConfigRepository(database).agents_for_organization("org-1")

        assert agents == ["agent-7", "agent-8"]
        assert collection.find.call_args[0][0] == {"organization_id": "org-1"}
