"""
Bot manager tests: registry, config lifecycle, persistence, aggregation.
"""
import logging

import pytest

from conftest import PRICES, ManualClock, preset_config
from tradesim.config import Settings
from tradesim.models.bot import Character, UnknownConfigFieldError
from tradesim.models.preset import PresetInput
from tradesim.repositories.in_memory_store import InMemoryStore
from tradesim.repositories.json_file_store import JsonFileStore
from tradesim.services.bot_manager import (
    BotAlreadyExistsError,
    BotManager,
    BotNotFoundError,
    InvalidBotConfigError,
    config_override,
    create_bot_manager,
)
from tradesim.services.price_feed import LocalPriceFeed
from tradesim.services.trading_bot import TradingBot


def run(manager, clock, ticks, step=30_000, prices=PRICES):
    for _ in range(ticks):
        manager.tick(prices)
        clock.advance(step)


class FailingStore(InMemoryStore):
    def set(self, key, value):
        raise OSError("disk full")


class TestCreate:
    def test_create_bot(self, manager, clock):
        stats = manager.create_bot(preset_config(), bot_id="alpha")
        assert stats.id == "alpha"
        assert manager.bot_ids() == ["alpha"]
        config = manager.get_config("alpha")
        assert config.id == "alpha"
        assert config.created_at == clock.now

    def test_generated_ids_follow_the_seed(self, clock):
        first = BotManager(InMemoryStore(), seed=3, clock=clock)
        second = BotManager(InMemoryStore(), seed=3, clock=clock)
        assert first.create_bot(preset_config()).id == second.create_bot(preset_config()).id
        assert first.bot_ids()[0].startswith("bot-")

    def test_invalid_config_rejected(self, manager):
        with pytest.raises(InvalidBotConfigError) as exc_info:
            manager.create_bot(preset_config(winPnLMin=5, winPnLMax=2))
        assert exc_info.value.validation.valid is False
        assert any("winPnLMin" in issue for issue in exc_info.value.validation.issues)
        assert manager.bot_ids() == []

    def test_validation_can_be_skipped(self, manager):
        manager.create_bot(preset_config(winPnLMin=5, winPnLMax=2), bot_id="raw", validate=False)
        assert manager.bot_ids() == ["raw"]

    def test_duplicate_id(self, manager):
        manager.create_bot(preset_config(), bot_id="alpha")
        with pytest.raises(BotAlreadyExistsError):
            manager.create_bot(preset_config(), bot_id="alpha")

    def test_from_preset(self, manager):
        stats = manager.create_from_preset(
            PresetInput(character=Character.CONSERVATIVE), bot_id="safe", invested_capital=5_000
        )
        config = manager.get_config("safe")
        assert stats.invested_capital == 5_000
        assert config.character is Character.CONSERVATIVE
        assert config.trading_pairs == manager.default_pairs

    def test_from_preset_rejects_bad_input(self, manager):
        with pytest.raises(InvalidBotConfigError) as exc_info:
            manager.create_from_preset(PresetInput(trades_per_day=5))
        assert exc_info.value.validation.issues == ["Trades per day must be between 50 and 500"]

    def test_map_preset_uses_manager_defaults(self, store, clock):
        manager = BotManager(store, clock=clock, default_pairs=["SOL/USDT"], default_capital=2_000)
        mapping = manager.map_preset(PresetInput())
        assert mapping.config.trading_pairs == ["SOL/USDT"]
        assert mapping.config.invested_capital == 2_000
        assert mapping.validation.valid


class TestLookups:
    def test_unknown_bot(self, manager):
        with pytest.raises(BotNotFoundError):
            manager.get_stats("missing")
        with pytest.raises(BotNotFoundError):
            manager.update_config("missing", {"winRate": 0.5})
        with pytest.raises(BotNotFoundError):
            manager.delete_bot("missing")


class TestConfigLifecycle:
    def test_partial_update(self, manager, store):
        manager.create_bot(preset_config(), bot_id="alpha")
        updated = manager.update_config("alpha", {"maxConcurrentPositions": 3, "open_frequency": 0.5})
        assert updated.max_concurrent_positions == 3
        assert updated.open_frequency == 0.5
        assert store.get("alpha")["configOverride"] == {
            "maxConcurrentPositions": 3,
            "openFrequency": 0.5,
        }

    def test_invalid_update_leaves_config(self, manager):
        manager.create_bot(preset_config(), bot_id="alpha")
        before = manager.get_config("alpha")
        with pytest.raises(InvalidBotConfigError):
            manager.update_config("alpha", {"minDuration": 10_000_000})
        assert manager.get_config("alpha") == before

    def test_replace_keeps_identity(self, manager):
        manager.create_bot(preset_config(), bot_id="alpha")
        created_at = manager.get_config("alpha").created_at
        replaced = manager.replace_config("alpha", preset_config(name="Renamed"))
        assert replaced.id == "alpha"
        assert replaced.name == "Renamed"
        assert replaced.created_at == created_at

    def test_reset_config_keeps_history(self, manager, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        run(manager, clock, 400)
        trades = manager.get_stats("alpha").trades_count
        assert trades > 0

        manager.update_config("alpha", {"name": "Changed"})
        restored = manager.reset_config("alpha")
        assert restored == manager.get_default_config("alpha")
        assert restored.name == "Moderate Bot"
        assert manager.get_stats("alpha").trades_count == trades

    def test_clear_history_keeps_config(self, manager, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        manager.update_config("alpha", {"name": "Changed"})
        run(manager, clock, 400)
        stats = manager.clear_history("alpha")
        assert stats.trades_count == 0 and stats.positions == []
        assert manager.get_config("alpha").name == "Changed"

    def test_unknown_field_rejected(self, manager):
        manager.create_bot(preset_config(), bot_id="alpha")
        with pytest.raises(InvalidBotConfigError) as exc_info:
            manager.update_config("alpha", {"winRatio": 0.7})
        assert "winRatio" in exc_info.value.validation.issues[0]

    def test_bad_type_rejected(self, manager):
        manager.create_bot(preset_config(), bot_id="alpha")
        with pytest.raises(InvalidBotConfigError) as exc_info:
            manager.update_config("alpha", {"maxConcurrentPositions": "many"})
        assert "maxConcurrentPositions" in exc_info.value.validation.issues[0]

    def test_fixed_leverage_replaces_the_set(self, manager, store, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        updated = manager.update_config("alpha", {"leverage": 7})
        assert updated.leverage_set() == [7.0]

        reloaded = BotManager(store, clock=clock)
        reloaded.load()
        assert reloaded.get_config("alpha").leverage_set() == [7.0]

    def test_reset_validates_the_default(self, manager):
        manager.create_bot(preset_config(winPnLMin=5, winPnLMax=2), bot_id="raw", validate=False)
        with pytest.raises(InvalidBotConfigError):
            manager.reset_config("raw")


class TestPersistence:
    def test_round_trip(self, store, clock):
        first = BotManager(store, seed=11, clock=clock)
        first.create_bot(preset_config(), bot_id="alpha")
        first.update_config("alpha", {"cooldownMs": 5_000})
        run(first, clock, 400)

        second = BotManager(store, seed=11, clock=clock)
        assert second.load() == ["alpha"]
        assert second.get_config("alpha") == first.get_config("alpha")
        assert second.get_default_config("alpha") == first.get_default_config("alpha")
        assert second.get_stats("alpha") == first.get_stats("alpha")

    def test_restored_bot_continues_like_the_live_one(self, store):
        clock_a, clock_b = ManualClock(), ManualClock()
        live = BotManager(store, seed=11, clock=clock_a)
        live.create_bot(preset_config(), bot_id="alpha")
        run(live, clock_a, 300)

        clock_b.now = clock_a.now
        restored = BotManager(store, seed=11, clock=clock_b)
        restored.load()
        run(live, clock_a, 300)
        run(restored, clock_b, 300)
        assert restored.get_bot("alpha").trades == live.get_bot("alpha").trades

    def test_delete_removes_all_state(self, manager, store, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        manager.create_bot(preset_config(), bot_id="beta")
        run(manager, clock, 200)
        manager.delete_bot("alpha")

        assert store.get("alpha") is None
        assert [s.id for s in manager.get_all_stats()] == ["beta"]
        reloaded = BotManager(store, clock=clock)
        assert reloaded.load() == ["beta"]

    def test_store_failure_is_not_fatal(self, clock, caplog):
        manager = BotManager(FailingStore(), seed=1, clock=clock)
        with caplog.at_level(logging.ERROR):
            manager.create_bot(preset_config(), bot_id="alpha")
            run(manager, clock, 200)
        assert manager.get_stats("alpha").trades_count > 0
        assert "STORE_WRITE_FAILED" in caplog.text

    def test_unreadable_record_is_skipped(self, store, clock):
        store.set("broken", {"defaultConfig": {"name": "x"}})
        manager = BotManager(store, clock=clock)
        assert manager.load() == []

    def test_json_file_store(self, tmp_path, clock):
        store = JsonFileStore(tmp_path / "bots")
        first = BotManager(store, seed=4, clock=clock)
        first.create_bot(preset_config(), bot_id="alpha")
        run(first, clock, 200)

        second = BotManager(store, seed=4, clock=clock)
        second.load()
        assert second.get_stats("alpha") == first.get_stats("alpha")


class TestDefaults:
    def test_defaults_registered_on_first_start(self, store, clock):
        defaults = {"master-1": preset_config(name="Master")}
        manager = BotManager(store, defaults=defaults, clock=clock)
        assert manager.load() == ["master-1"]
        manager.update_config("master-1", {"name": "Tuned"})
        assert manager.reset_config("master-1").name == "Master"

    def test_deleted_default_stays_deleted(self, store, clock):
        defaults = {"master-1": preset_config(), "master-2": preset_config()}
        manager = BotManager(store, defaults=defaults, clock=clock)
        manager.load()
        manager.delete_bot("master-1")

        again = BotManager(store, defaults=defaults, clock=clock)
        assert again.load() == ["master-2"]

    def test_invalid_default_is_skipped(self, store, clock, caplog):
        defaults = {
            "master-1": preset_config(),
            "broken": preset_config(winPnLMin=5, winPnLMax=2),
        }
        manager = BotManager(store, defaults=defaults, clock=clock)
        with caplog.at_level(logging.WARNING):
            assert manager.load() == ["master-1"]
        assert "CONFIG_REJECTED: bot=broken" in caplog.text
        assert store.get("broken") is None


class TestTicksAndAggregation:
    def test_tick_results(self, manager, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        manager.create_bot(preset_config(tradingPairs=["SOL/USDT"]), bot_id="sol")
        results = manager.tick(PRICES)
        by_id = {r.bot_id: r for r in results}
        assert by_id["sol"].skipped is True
        assert by_id["alpha"].skipped is False

    def test_failing_bot_does_not_stop_the_others(self, manager, caplog, monkeypatch):
        manager.create_bot(preset_config(openFrequency=1.0), bot_id="alpha")
        manager.create_bot(preset_config(openFrequency=1.0), bot_id="beta")
        process_tick = TradingBot.process_tick

        def flaky(bot, prices):
            if bot.id == "alpha":
                raise ZeroDivisionError("float division by zero")
            return process_tick(bot, prices)

        monkeypatch.setattr(TradingBot, "process_tick", flaky)
        with caplog.at_level(logging.ERROR):
            results = manager.tick(PRICES)

        by_id = {r.bot_id: r for r in results}
        assert by_id["alpha"].failed is True
        assert by_id["alpha"].skipped is True
        assert by_id["beta"].failed is False
        assert len(by_id["beta"].opened) == 1
        assert "BOT_TICK_FAILED: bot=alpha" in caplog.text

    def test_get_bot_is_detached(self, manager, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        run(manager, clock, 400)
        trades = manager.get_stats("alpha").trades_count

        copy = manager.get_bot("alpha")
        assert len(copy.trades) == trades
        copy.clear_history()
        assert manager.get_stats("alpha").trades_count == trades

    def test_aggregated_stats(self, manager, clock):
        manager.create_bot(preset_config(), bot_id="alpha")
        manager.create_from_preset(PresetInput(character=Character.AGGRESSIVE), bot_id="beta")
        run(manager, clock, 600)

        bots = manager.get_all_stats()
        total = manager.get_aggregated_stats(trade_limit=20)
        assert total.total_bots == 2
        assert total.total_invested == pytest.approx(sum(b.invested_capital for b in bots))
        assert total.total_pnl == pytest.approx(sum(b.total_pnl for b in bots))
        assert total.total_trades == sum(b.trades_count for b in bots)
        assert total.win_rate == pytest.approx(
            sum(b.wins_count for b in bots) / sum(b.trades_count for b in bots)
        )
        assert len(total.trades) == 20
        closed = [t.closed_at for t in total.trades]
        assert closed == sorted(closed, reverse=True)

    def test_empty_aggregate(self, manager):
        total = manager.get_aggregated_stats()
        assert total.total_bots == 0
        assert total.win_rate == 0.0

    def test_auto_pricing(self, manager, clock):
        manager.create_bot(preset_config(openFrequency=1.0), bot_id="alpha")
        feed = LocalPriceFeed()
        unsubscribe = manager.start_auto_pricing(feed)
        feed.publish(PRICES)
        assert manager.get_stats("alpha").positions

        unsubscribe()
        assert feed.listener_count == 0


class TestFactory:
    def test_in_memory_without_store_dir(self):
        manager = create_bot_manager(Settings(store_dir=None, seed=5))
        assert manager.bot_ids() == []
        assert manager.default_capital == 10_000

    def test_json_store_with_store_dir(self, tmp_path):
        settings = Settings(store_dir=str(tmp_path), seed=5, default_pairs=["SOL/USDT"])
        manager = create_bot_manager(settings)
        manager.create_from_preset(PresetInput(), bot_id="alpha")
        assert (tmp_path / "alpha.json").exists()
        assert create_bot_manager(settings).get_config("alpha").trading_pairs == ["SOL/USDT"]


class TestConfigOverride:
    def test_diff_is_keyed_by_alias(self):
        default = preset_config()
        changed = default.merged({"winPnLMax": 2.0})
        assert config_override(default, changed) == {"winPnLMax": 2.0}
        assert config_override(default, default) == {}


class TestMerged:
    def test_unknown_keys_raise(self):
        with pytest.raises(UnknownConfigFieldError) as exc_info:
            preset_config().merged({"winRatio": 0.7, "name": "x", "colour": "red"})
        assert exc_info.value.fields == ["winRatio", "colour"]

    def test_accepts_attribute_names_and_aliases(self):
        config = preset_config().merged({"win_pnl_max": 2.0, "maxSlippage": 0.2})
        assert config.win_pnl_max == 2.0
        assert config.max_slippage == 0.2

    def test_fixed_leverage_clears_the_set(self):
        config = preset_config().merged({"leverage": 7})
        assert config.leverages == []
        assert config.leverage_set() == [7.0]

    def test_leverage_with_explicit_set(self):
        config = preset_config().merged({"leverage": 7, "leverages": [3, 5]})
        assert config.leverage_set() == [3.0, 5.0]

    def test_override_keeps_the_cleared_set(self):
        default = preset_config()
        changed = default.merged({"leverage": 7})
        override = config_override(default, changed)
        assert override["leverages"] == []
        assert default.merged(override).leverage_set() == [7.0]
