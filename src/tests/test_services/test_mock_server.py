"""
Tests for MockServerService (authoritative validation, sessions, persistence)
"""

import pytest

from anticheat import AntiCheatConfig
from models import RewardEntry
from services import Events, InMemoryStore, JsonFileStore, MockServerService, ServerError
from services.mock_server import MAX_VALIDATED_INDICES, SERVER_STATE_KEY, ServerPlayerState


def _record(bus, event):
    received = []

    def handler(event_dict):
        received.append(event_dict["data"])

    bus.subscribe(event, handler, weak=False)
    return received


class TestServerSessions:
    """Tests for start_session / sync_session"""

    @pytest.mark.asyncio
    async def test_start_session_issues_fresh_identity(self, server, clock, bus):
        started = _record(bus, Events.SERVER_SESSION_STARTED)

        session = await server.start_session("p1")

        assert session.player_id == "p1"
        assert session.session_id
        assert session.game_seed
        assert session.start_time == clock()
        assert (session.expiry_time - session.start_time).total_seconds() == 15 * 60
        assert session.initial_ball_count == 200
        assert session.current_wallet_balance == 0
        assert started[0]["session"].session_id == session.session_id

    @pytest.mark.asyncio
    async def test_each_start_replaces_the_session(self, server):
        first = await server.start_session("p1")
        second = await server.start_session("p1")
        assert first.session_id != second.session_id
        assert first.game_seed != second.game_seed
        assert server.get_player_state("p1").current_session_id == second.session_id

    @pytest.mark.asyncio
    async def test_simulated_start_failure_raises(self, make_server, bus):
        errors = _record(bus, Events.SERVER_ERROR)
        server = make_server(error_rate=1.0)

        with pytest.raises(ServerError):
            await server.start_session("p1")
        assert errors[0]["operation"] == "start_session"
        assert server.get_player_state("p1") is None

    @pytest.mark.asyncio
    async def test_sync_bootstraps_unknown_player(self, server, bus):
        synced = _record(bus, Events.SERVER_SESSION_SYNCED)

        session = await server.sync_session("p1", "client-session", client_wallet_balance=300)

        assert session.session_id == "client-session"
        assert session.current_wallet_balance == 300
        assert session.should_compute_locally
        assert server.get_player_state("p1").wallet_balance == 300
        assert len(synced) == 1

    @pytest.mark.asyncio
    async def test_sync_continues_live_session(self, server, clock):
        started = await server.start_session("p1")
        clock.advance(60)

        session = await server.sync_session("p1", started.session_id)

        assert session.session_id == started.session_id
        assert session.remaining_seconds == pytest.approx(14 * 60)

    @pytest.mark.asyncio
    async def test_sync_of_expired_session_starts_new_one(self, server, clock):
        started = await server.start_session("p1")
        clock.advance(15 * 60)

        session = await server.sync_session("p1", started.session_id)

        assert session.session_id != started.session_id
        assert session.should_compute_locally

    @pytest.mark.asyncio
    async def test_sync_with_wrong_session_id_starts_new_one(self, server):
        started = await server.start_session("p1")
        session = await server.sync_session("p1", "someone-elses-session")
        assert session.session_id not in (started.session_id, "someone-elses-session")


class TestServerValidation:
    """Tests for validate_batch"""

    @pytest.mark.asyncio
    async def test_valid_batch_is_credited(self, server, make_batch, bus):
        verdicts = _record(bus, Events.SERVER_BATCH_VERDICT)
        session = await server.start_session("p1")
        batch = make_batch("p1", session.session_id, [(0, 100), (6, 1), (3, 10)])

        response = await server.validate_batch(batch)

        assert response.is_valid
        assert not response.is_partial
        assert response.server_calculated_reward == 111
        assert response.new_wallet_balance == 111
        state = server.get_player_state("p1")
        assert state.wallet_balance == 111
        assert state.total_earned == 111
        assert state.session_ball_index == 3
        assert verdicts[0]["response"] is response

    @pytest.mark.asyncio
    async def test_duplicate_ball_indices_are_refused(self, server, make_batch):
        session = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", session.session_id, [(0, 100), (6, 1)]))

        replay = make_batch("p1", session.session_id, [(0, 100), (6, 1)])
        response = await server.validate_batch(replay)

        assert not response.is_valid
        assert not response.is_retryable
        assert response.invalid_entry_indices == [0, 1]
        assert "all entries invalid" in response.error_message
        assert response.new_wallet_balance == 101
        assert server.get_player_state("p1").wallet_balance == 101

    @pytest.mark.asyncio
    async def test_partial_batch_credits_passing_entries(self, server, make_batch, make_entry):
        session = await server.start_session("p1")
        batch = make_batch(
            "p1",
            session.session_id,
            [
                make_entry(0, 0, 100),
                make_entry(1, 0, 5000),  # inflated reward
                make_entry(2, 13, 100),  # no such bucket
                make_entry(3, 12, 100),
            ],
        )

        response = await server.validate_batch(batch)

        assert response.is_valid
        assert response.is_partial
        assert response.invalid_entry_indices == [1, 2]
        assert response.server_calculated_reward == 200
        assert response.error_message == "Partial validation: 2/4 entries rejected"
        assert server.get_player_state("p1").wallet_balance == 200

    @pytest.mark.asyncio
    async def test_reward_tolerance(self, server, make_batch, make_entry):
        session = await server.start_session("p1")
        batch = make_batch(
            "p1",
            session.session_id,
            [make_entry(0, 0, 101), make_entry(1, 0, 102)],
        )

        response = await server.validate_batch(batch)

        assert response.invalid_entry_indices == [1]
        assert response.server_calculated_reward == 101

    @pytest.mark.asyncio
    async def test_negative_ball_index_is_refused(self, server, make_batch, make_entry):
        session = await server.start_session("p1")
        batch = make_batch("p1", session.session_id, [make_entry(-1, 6), make_entry(0, 6)])
        response = await server.validate_batch(batch)
        assert response.invalid_entry_indices == [0]

    @pytest.mark.asyncio
    async def test_missing_bucket_count_uses_default_board(self, server, make_batch):
        session = await server.start_session("p1")
        entry = RewardEntry(
            ball_index=0,
            bucket_index=12,
            total_bucket_count=0,
            reward_amount=100,
            level=0,
            drop_position_x=0.0,
        )
        response = await server.validate_batch(make_batch("p1", session.session_id, [entry]))
        assert response.is_valid
        assert response.server_calculated_reward == 100

    @pytest.mark.asyncio
    async def test_level_multiplier_is_applied(self, server, make_batch, make_entry):
        session = await server.start_session("p1")
        batch = make_batch("p1", session.session_id, [make_entry(0, 0, 200, level=1)])
        response = await server.validate_batch(batch)
        assert response.server_calculated_reward == 200

    @pytest.mark.asyncio
    async def test_unknown_player_is_rejected(self, server, make_batch):
        response = await server.validate_batch(make_batch("ghost", "s", [(6, 1)]))
        assert not response.is_valid
        assert response.error_message == "Invalid player"

    @pytest.mark.asyncio
    async def test_simulated_failure_is_retryable(self, server, make_batch, bus):
        errors = _record(bus, Events.SERVER_ERROR)
        session = await server.start_session("p1")
        server.error_rate = 1.0

        response = await server.validate_batch(make_batch("p1", session.session_id, [(0, 100)]))

        assert response.is_retryable
        assert not response.is_valid
        assert server.get_player_state("p1").wallet_balance == 0
        assert errors[0]["operation"] == "validate_batch"

    @pytest.mark.asyncio
    async def test_new_session_resets_duplicate_tracking(self, server, make_batch):
        first = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", first.session_id, [(6, 1)]))

        second = await server.start_session("p1")
        response = await server.validate_batch(make_batch("p1", second.session_id, [(6, 1)]))

        assert response.is_valid
        assert server.get_player_state("p1").wallet_balance == 2


class TestServerAntiCheat:
    """Anti-cheat escalation through the server"""

    @pytest.mark.asyncio
    async def test_persistent_edge_hits_escalate_to_rejection(self, make_server, make_batch, make_entry):
        server = make_server(anti_cheat_config=AntiCheatConfig(statistical_sample_size=10))
        session = await server.start_session("p1")

        def edge_batch(k):
            return make_batch(
                "p1",
                session.session_id,
                [make_entry(2 * k, 12, 100, drop_x=-2.5), make_entry(2 * k + 1, 12, 100, drop_x=-2.5)],
            )

        for k in range(11):
            response = await server.validate_batch(edge_batch(k))
            assert response.is_valid, f"batch {k}: {response.error_message}"

        assert server.get_player_state("p1").wallet_balance == 2200

        rejected = await server.validate_batch(edge_batch(11))
        assert not rejected.is_valid
        assert not rejected.is_retryable
        assert rejected.error_message.startswith("Batch rejected by anti-cheat")
        assert rejected.new_wallet_balance == 2200

        # The session stays flagged
        again = await server.validate_batch(edge_batch(12))
        assert not again.is_valid
        assert server.get_player_state("p1").wallet_balance == 2200

    @pytest.mark.asyncio
    async def test_new_session_clears_anti_cheat_stats(self, make_server, make_batch):
        server = make_server()
        first = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", first.session_id, [(6, 1)]))
        assert server.anti_cheat.get_player_stats("p1", first.session_id) is not None

        await server.start_session("p1")
        assert server.anti_cheat.get_player_stats("p1", first.session_id) is None


class TestServerWallet:
    @pytest.mark.asyncio
    async def test_wallet_queries(self, server, make_batch):
        session = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", session.session_id, [(0, 100)]))

        assert await server.get_wallet_balance("p1") == 100
        assert await server.get_wallet_balance("ghost") == 0

        sync = await server.force_sync_wallet("p1")
        assert sync.success
        assert sync.server_balance == 100
        assert sync.total_earned == 100

    @pytest.mark.asyncio
    async def test_force_sync_unknown_player(self, server):
        sync = await server.force_sync_wallet("ghost")
        assert not sync.success
        assert sync.error_message == "Player not found"

    def test_calculate_expected_reward(self, server):
        assert server.calculate_expected_reward(0, 13, 0) == 100
        assert server.calculate_expected_reward(6, 13, 2) == 3
        assert server.calculate_expected_reward(0, 13, 99) == 500


class TestServerPersistence:
    """Ledger persistence through the key/value store"""

    @pytest.mark.asyncio
    async def test_ledger_survives_restart(self, make_server, store, make_batch):
        server = make_server()
        session = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", session.session_id, [(0, 100), (12, 100)]))
        assert store.has_key(SERVER_STATE_KEY)

        restarted = make_server()
        state = restarted.get_player_state("p1")

        assert state.wallet_balance == 200
        assert state.total_earned == 200
        assert state.current_session_id == session.session_id
        assert state.session_start_time == session.start_time
        assert state.session_ball_index == 2

    @pytest.mark.asyncio
    async def test_ledger_flushed_to_file_store_without_autosave(
        self, make_server, make_batch, tmp_path
    ):
        path = tmp_path / "preferences.json"
        server = make_server(preferences=JsonFileStore(path, autosave=False))
        session = await server.start_session("p1")
        await server.validate_batch(make_batch("p1", session.session_id, [(0, 100)]))

        restarted = make_server(preferences=JsonFileStore(path))
        assert restarted.get_player_state("p1").wallet_balance == 100

    @pytest.mark.asyncio
    async def test_restarted_server_resumes_session(self, make_server, clock):
        server = make_server()
        session = await server.start_session("p1")
        clock.advance(30)

        resumed = await make_server().sync_session("p1", session.session_id)
        assert resumed.session_id == session.session_id

    def test_corrupt_ledger_is_ignored(self, make_server):
        store = InMemoryStore({SERVER_STATE_KEY: "{not json"})
        server = make_server(preferences=store)
        assert server.get_player_state("p1") is None

    def test_from_config(self, store, clock, bus):
        from config import Config

        app_config = Config(validate=False, ensure_directories=False)
        app_config.NETWORK["min_latency_ms"] = 0
        app_config.NETWORK["max_latency_ms"] = 0
        app_config.BOARD["spawn_left"] = -4.0
        app_config.ANTI_CHEAT["statistical_sample_size"] = 25

        server = MockServerService.from_config(app_config, store, clock=clock, bus=bus)

        assert server.anti_cheat.spawn_left == -4.0
        assert server.anti_cheat.config.statistical_sample_size == 25
        assert server.initial_ball_count == app_config.SESSION["initial_ball_count"]


class TestServerPlayerState:
    def test_dedup_set_is_cleared_when_full(self):
        state = ServerPlayerState(player_id="p1")
        for i in range(MAX_VALIDATED_INDICES):
            state.add_validated_index(i)
        assert len(state.validated_ball_indices) == MAX_VALIDATED_INDICES

        state.add_validated_index(MAX_VALIDATED_INDICES)
        assert state.validated_ball_indices == {MAX_VALIDATED_INDICES}

    def test_record_round_trip(self):
        state = ServerPlayerState(player_id="p1", wallet_balance=7, total_earned=9)
        restored = ServerPlayerState.from_record(state.to_record())
        assert restored.wallet_balance == 7
        assert restored.total_earned == 9
        assert restored.validated_ball_indices == set()
