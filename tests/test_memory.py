from datetime import datetime, timezone

import pytest

from chat_engine.memory import LocalMemoryBackend, SemanticMemoryStore, is_important, relevance
from chat_engine.models import MemoryRecord, Turn
from chat_engine.remote_memory import PineconeMemoryBackend


_counter = iter(range(10_000))


def turn(content, role="user", session_id="s1"):
    return Turn(
        id=f"t{next(_counter)}",
        session_id=session_id,
        role=role,
        content=content,
        timestamp=datetime.now(timezone.utc),
    )


class FailingRemote:
    def add(self, turns, user_id, metadata):
        raise ConnectionError("remote down")

    def search(self, query, user_id, limit):
        raise ConnectionError("remote down")

    def get_all(self, user_id):
        raise ConnectionError("remote down")

    def delete(self, memory_id):
        raise ConnectionError("remote down")


class FakeIndex:
    """Minimal stand-in for a Pinecone index."""

    def __init__(self, query_response=None):
        self.vectors = {}
        self.query_response = query_response
        self.deleted = []

    def upsert(self, vectors, namespace=None):
        for item in vectors:
            self.vectors[item["id"]] = item

    def query(self, vector, top_k, include_metadata=True, filter=None, namespace=None):
        if self.query_response is not None:
            return self.query_response
        user = filter["user_id"]["$eq"]
        matches = [
            {"id": vid, "score": 0.9, "metadata": item["metadata"]}
            for vid, item in self.vectors.items()
            if item["metadata"]["user_id"] == user
        ]
        return {"matches": matches[:top_k]}

    def list(self, prefix, namespace=None):
        yield [vid for vid in self.vectors if vid.startswith(prefix)]

    def fetch(self, ids, namespace=None):
        return {"vectors": {vid: self.vectors[vid] for vid in ids}}

    def delete(self, ids, namespace=None):
        self.deleted.extend(ids)
        for vid in ids:
            self.vectors.pop(vid, None)


def fake_embed_texts(texts):
    return [[float(len(t)), 1.0] for t in texts]


def fake_embed_query(text):
    return [float(len(text)), 1.0]


class TestImportance:

    @pytest.mark.parametrize(
        "content",
        [
            "My name is Alice",
            "I live in Tokyo",
            "I really like green tea",
            "I work as a nurse",
            "Please remember my birthday is in May",
            "This is important: no peanuts",
            "我叫小明",
        ],
    )
    def test_detects_personal_facts(self, content):
        assert is_important(content)

    @pytest.mark.parametrize("content", ["nice weather today", "what time is it?", ""])
    def test_ignores_small_talk(self, content):
        assert not is_important(content)

    def test_relevance_is_fraction_of_tokens(self):
        assert relevance("alice likes coffee and tea", ["alice", "likes", "coffee"]) == 1.0
        assert relevance("alice drinks water", ["alice", "likes", "coffee"]) == pytest.approx(1 / 3)
        assert relevance("anything", []) == 0.0


class TestLocalStore:

    @pytest.fixture
    def store(self):
        return SemanticMemoryStore()

    def test_location_statement_creates_one_record(self, store):
        store.add_memory([turn("I live in Tokyo")], "u1")
        records = store.get_all_memories("u1")
        assert len(records) == 1
        assert records[0].content == "I live in Tokyo"
        assert records[0].user_id == "u1"

    def test_small_talk_creates_nothing(self, store):
        store.add_memory([turn("nice weather today")], "u1")
        assert store.get_all_memories("u1") == []

    def test_only_user_turns_are_scanned(self, store):
        store.add_memory([turn("My name is Bot", role="assistant"), turn("I live in Oslo", role="system")], "u1")
        assert store.get_all_memories("u1") == []

    def test_same_turn_is_extracted_once(self, store):
        t = turn("My name is Alice")
        store.add_memory([t], "u1")
        store.add_memory([t], "u1")
        assert len(store.get_all_memories("u1")) == 1

    def test_metadata_carries_session_id(self, store):
        store.add_memory([turn("My name is Alice", session_id="tg:42")], "u1", {"source": "test"})
        record = store.get_all_memories("u1")[0]
        assert record.metadata == {"session_id": "tg:42", "source": "test"}

    def test_search_ranks_full_match_first(self, store):
        store.add_memory(
            [turn("Remember alice drinks water"), turn("Remember: alice likes coffee and tea")],
            "u1",
        )
        results = store.search_memory("alice likes coffee", "u1", 5)

        assert [r.content for r in results] == [
            "Remember: alice likes coffee and tea",
            "Remember alice drinks water",
        ]
        assert results[0].score == 1.0
        assert results[1].score == pytest.approx(1 / 3)

    def test_search_excludes_zero_and_truncates(self, store):
        store.add_memory(
            [
                turn("Remember the red door"),
                turn("Remember the blue door"),
                turn("Remember to water plants"),
            ],
            "u1",
        )
        results = store.search_memory("door", "u1", 1)
        # tie keeps storage order
        assert [r.content for r in results] == ["Remember the red door"]
        assert store.search_memory("giraffe", "u1", 5) == []

    def test_search_never_crosses_users(self, store):
        store.add_memory([turn("My name is Alice")], "u1")
        assert store.search_memory("alice", "u2", 5) == []

    def test_stored_records_are_not_scored(self, store):
        store.add_memory([turn("My name is Alice")], "u1")
        store.search_memory("alice", "u1", 5)
        assert store.get_all_memories("u1")[0].score is None

    def test_delete_memory_across_users(self, store):
        store.add_memory([turn("My name is Alice")], "u1")
        store.add_memory([turn("My name is Bob")], "u2")
        bob = store.get_all_memories("u2")[0]

        store.delete_memory(bob.id)
        store.delete_memory("does-not-exist")

        assert store.get_all_memories("u2") == []
        assert len(store.get_all_memories("u1")) == 1


class TestRemoteFallback:

    def test_failing_remote_falls_back_to_local(self):
        store = SemanticMemoryStore(remote=FailingRemote())
        store.add_memory([turn("My name is Alice")], "u1")

        assert [r.content for r in store.get_all_memories("u1")] == ["My name is Alice"]
        assert store.search_memory("alice", "u1", 5)[0].content == "My name is Alice"
        record_id = store.get_all_memories("u1")[0].id
        store.delete_memory(record_id)
        assert store.get_all_memories("u1") == []

    def test_healthy_remote_is_used(self):
        remote_record = MemoryRecord(id="r1", content="remote fact", user_id="u1", score=0.7)

        class Remote:
            def __init__(self):
                self.added = []

            def add(self, turns, user_id, metadata):
                self.added.append((turns, user_id))

            def search(self, query, user_id, limit):
                return [remote_record]

            def get_all(self, user_id):
                return [remote_record]

            def delete(self, memory_id):
                pass

        remote = Remote()
        local = LocalMemoryBackend()
        store = SemanticMemoryStore(remote=remote, local=local)
        store.add_memory([turn("My name is Alice")], "u1")

        assert len(remote.added) == 1
        assert local.get_all("u1") == []
        assert store.search_memory("anything", "u1", 5) == [remote_record]


class TestPineconeBackend:

    @pytest.fixture
    def index(self):
        return FakeIndex()

    @pytest.fixture
    def backend(self, index):
        return PineconeMemoryBackend(
            "memories", index=index, embed_texts=fake_embed_texts, embed_query=fake_embed_query
        )

    def test_add_stores_only_important_turns(self, backend, index):
        t = turn("I live in Tokyo")
        backend.add([t, turn("nice weather today")], "u1", {"session_id": "s1"})

        assert list(index.vectors) == [f"u1#{t.id}"]
        md = index.vectors[f"u1#{t.id}"]["metadata"]
        assert md["content"] == "I live in Tokyo"
        assert md["user_id"] == "u1"

    def test_search_and_get_all_roundtrip_metadata(self, backend):
        backend.add([turn("I live in Tokyo")], "u1", {"session_id": "s1"})
        backend.add([turn("My name is Bob")], "u2", None)

        found = backend.search("tokyo", "u1", 5)
        assert [r.content for r in found] == ["I live in Tokyo"]
        assert found[0].score == pytest.approx(0.9)
        assert found[0].metadata == {"session_id": "s1"}
        assert [r.content for r in backend.get_all("u2")] == ["My name is Bob"]

    def test_delete_by_id(self, backend, index):
        backend.add([turn("I live in Tokyo")], "u1", None)
        memory_id = backend.get_all("u1")[0].id
        backend.delete(memory_id)
        assert index.deleted == [memory_id]
        assert backend.get_all("u1") == []

    def test_malformed_response_triggers_local_fallback(self):
        broken = PineconeMemoryBackend(
            "memories",
            index=FakeIndex(query_response={"unexpected": True}),
            embed_texts=fake_embed_texts,
            embed_query=fake_embed_query,
        )
        with pytest.raises(ValueError):
            broken.search("tokyo", "u1", 5)

        local = LocalMemoryBackend()
        local.add([turn("I live in Tokyo")], "u1", None)
        store = SemanticMemoryStore(remote=broken, local=local)
        assert [r.content for r in store.search_memory("tokyo", "u1", 5)] == ["I live in Tokyo"]
