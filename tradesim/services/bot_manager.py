import logging
import random
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..config import Settings, get_settings
from ..domain.preset_mapper import (
    DEFAULT_INVESTED_CAPITAL,
    DEFAULT_TRADING_PAIRS,
    map_preset_to_config,
    validate_preset_input,
)
from ..domain.validator import validate_bot_config
from ..models.bot import BotConfig, UnknownConfigFieldError
from ..models.preset import PresetInput, PresetMapping, ValidationResult
from ..models.stats import BotStats, BotTickResult, ManagerStats
from ..repositories.in_memory_store import InMemoryStore
from ..repositories.json_file_store import JsonFileStore
from ..repositories.store import Record, Store
from .price_feed import PriceFeed, Unsubscribe
from .trading_bot import Clock, TradingBot, now_ms

logger = logging.getLogger(__name__)


class BotManagerError(Exception):
    pass


class BotNotFoundError(BotManagerError):
    def __init__(self, bot_id: str) -> None:
        super().__init__(f"Bot {bot_id} not found")
        self.bot_id = bot_id


class BotAlreadyExistsError(BotManagerError):
    def __init__(self, bot_id: str) -> None:
        super().__init__(f"Bot {bot_id} already exists")
        self.bot_id = bot_id


class InvalidBotConfigError(BotManagerError):
    def __init__(self, validation: ValidationResult) -> None:
        super().__init__("; ".join(validation.issues) or "invalid bot config")
        self.validation = validation


@dataclass
class _BotEntry:
    default_config: BotConfig
    bot: TradingBot


def config_override(default: BotConfig, current: BotConfig) -> Dict[str, Any]:
    """Fields of ``current`` that differ from ``default``, keyed by JSON alias."""
    base = default.to_json()
    data = current.to_json()
    override = {key: value for key, value in data.items() if base.get(key) != value}
    # merged() clears the leverage set when only a fixed leverage is given.
    if "leverage" in override:
        override["leverages"] = data["leverages"]
    return override


class BotManager:
    """Registry of trading bots: creation, config changes, ticks, persistence
    and aggregated stats.

    All public methods hold one re-entrant lock, so API threads and the tick
    source never see a bot halfway through an update.
    """

    def __init__(
        self,
        store: Store,
        defaults: Optional[Mapping[str, BotConfig]] = None,
        seed: Optional[int] = None,
        clock: Optional[Clock] = None,
        default_pairs: Optional[List[str]] = None,
        default_capital: Optional[float] = None,
    ) -> None:
        self._store = store
        self._defaults: Dict[str, BotConfig] = dict(defaults or {})
        self._seed = seed
        self._clock = clock or now_ms
        self._id_rng = random.Random(f"{seed}:ids") if seed is not None else None
        self._bots: Dict[str, _BotEntry] = {}
        self._lock = threading.RLock()
        self.default_pairs = list(default_pairs or DEFAULT_TRADING_PAIRS)
        self.default_capital = (
            default_capital if default_capital is not None else DEFAULT_INVESTED_CAPITAL
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rng_for(self, bot_id: str) -> random.Random:
        if self._seed is None:
            return random.Random()
        return random.Random(f"{self._seed}:{bot_id}")

    def _new_bot_id(self) -> str:
        if self._id_rng is None:
            return f"bot-{uuid.uuid4()}"
        return f"bot-{uuid.UUID(int=self._id_rng.getrandbits(128), version=4)}"

    def _entry(self, bot_id: str) -> _BotEntry:
        entry = self._bots.get(bot_id)
        if entry is None:
            raise BotNotFoundError(bot_id)
        return entry

    def _record(self, entry: _BotEntry) -> Record:
        bot = entry.bot
        return {
            "id": bot.id,
            "defaultConfig": entry.default_config.to_json(),
            "configOverride": config_override(entry.default_config, bot.config),
            "state": bot.to_record(),
        }

    def _persist(self, entry: _BotEntry) -> None:
        try:
            self._store.set(entry.bot.id, self._record(entry))
        except Exception:
            logger.exception("STORE_WRITE_FAILED: bot=%s", entry.bot.id)

    def _restore(self, bot_id: str, record: Record) -> _BotEntry:
        default = BotConfig.model_validate(record["defaultConfig"])
        config = default.merged(record.get("configOverride") or {})
        bot = TradingBot.from_record(
            bot_id,
            config,
            record.get("state") or {},
            clock=self._clock,
            rng=self._rng_for(bot_id),
        )
        return _BotEntry(default_config=default, bot=bot)

    def _check(self, config: BotConfig) -> ValidationResult:
        result = validate_bot_config(config)
        if not result.valid:
            logger.warning(
                "CONFIG_REJECTED: bot=%s issues=%s", config.id or config.name, result.issues
            )
            raise InvalidBotConfigError(result)
        for warning in result.warnings:
            logger.warning("CONFIG_WARNING: bot=%s %s", config.id or config.name, warning)
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> List[str]:
        """Rebuild the registry from the store.

        Default bots are only registered on a first start, when the store holds
        no records, so a deleted default bot stays deleted.
        """
        with self._lock:
            self._bots.clear()
            try:
                keys = self._store.keys()
            except Exception:
                logger.exception("STORE_READ_FAILED: listing keys")
                keys = []

            for key in keys:
                try:
                    record = self._store.get(key)
                    if record is None:
                        continue
                    self._bots[key] = self._restore(key, record)
                except (OSError, ValueError, KeyError, TypeError):
                    logger.exception("STORE_RECORD_INVALID: bot=%s", key)

            seeded = 0
            if not keys:
                for bot_id, config in self._defaults.items():
                    try:
                        self._check(config.model_copy(update={"id": bot_id}))
                    except InvalidBotConfigError:
                        continue
                    self._register(config, bot_id, config)
                    seeded += 1

            logger.info(
                "MANAGER_LOAD: bots=%d restored=%d defaults=%d",
                len(self._bots),
                len(self._bots) - seeded,
                seeded,
            )
            return self.bot_ids()

    def _register(self, config: BotConfig, bot_id: str, default: BotConfig) -> _BotEntry:
        created_at = config.created_at if config.created_at is not None else self._clock()
        config = config.model_copy(update={"id": bot_id, "created_at": created_at}, deep=True)
        default = default.model_copy(update={"id": bot_id, "created_at": created_at}, deep=True)
        entry = _BotEntry(
            default_config=default,
            bot=TradingBot(bot_id, config, rng=self._rng_for(bot_id), clock=self._clock),
        )
        self._bots[bot_id] = entry
        self._persist(entry)
        logger.info(
            "BOT_CREATED: bot=%s name=%s capital=%.2f target=%.2f%% trades_per_day=%g mode=%s",
            bot_id,
            config.name,
            config.invested_capital,
            config.daily_target_percent,
            config.trades_per_day,
            config.convergence_mode.value,
        )
        return entry

    def create_bot(
        self, config: BotConfig, bot_id: Optional[str] = None, validate: bool = True
    ) -> BotStats:
        with self._lock:
            bot_id = bot_id or config.id or self._new_bot_id()
            if bot_id in self._bots:
                raise BotAlreadyExistsError(bot_id)
            config = config.model_copy(update={"id": bot_id})
            if validate:
                self._check(config)
            entry = self._register(config, bot_id, self._defaults.get(bot_id, config))
            return entry.bot.stats()

    def map_preset(
        self,
        preset: PresetInput,
        name: Optional[str] = None,
        trading_pairs: Optional[List[str]] = None,
        invested_capital: Optional[float] = None,
    ) -> PresetMapping:
        errors = validate_preset_input(preset)
        config = map_preset_to_config(
            preset,
            trading_pairs=trading_pairs or self.default_pairs,
            invested_capital=invested_capital if invested_capital is not None else self.default_capital,
            name=name,
        )
        return PresetMapping(
            config=config, validation=validate_bot_config(config), input_errors=errors
        )

    def create_from_preset(
        self,
        preset: PresetInput,
        bot_id: Optional[str] = None,
        name: Optional[str] = None,
        trading_pairs: Optional[List[str]] = None,
        invested_capital: Optional[float] = None,
    ) -> BotStats:
        mapping = self.map_preset(preset, name, trading_pairs, invested_capital)
        if mapping.input_errors:
            raise InvalidBotConfigError(
                ValidationResult(valid=False, issues=mapping.input_errors)
            )
        return self.create_bot(mapping.config, bot_id=bot_id)

    def delete_bot(self, bot_id: str) -> None:
        with self._lock:
            self._entry(bot_id)
            del self._bots[bot_id]
            try:
                self._store.delete(bot_id)
            except Exception:
                logger.exception("STORE_DELETE_FAILED: bot=%s", bot_id)
            logger.info("BOT_DELETED: bot=%s", bot_id)

    # ------------------------------------------------------------------
    # Config changes
    # ------------------------------------------------------------------

    def _apply_config(self, entry: _BotEntry, config: BotConfig) -> BotConfig:
        current = entry.bot.config
        config = config.model_copy(
            update={"id": entry.bot.id, "created_at": current.created_at}, deep=True
        )
        self._check(config)
        entry.bot.update_config(config)
        self._persist(entry)
        return entry.bot.config

    def update_config(self, bot_id: str, changes: Dict[str, Any]) -> BotConfig:
        with self._lock:
            entry = self._entry(bot_id)
            try:
                config = entry.bot.config.merged(changes)
            except UnknownConfigFieldError as exc:
                raise InvalidBotConfigError(
                    ValidationResult(valid=False, issues=[str(exc)])
                ) from exc
            except ValidationError as exc:
                issues = [
                    f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                    for error in exc.errors()
                ]
                raise InvalidBotConfigError(ValidationResult(valid=False, issues=issues)) from exc
            return self._apply_config(entry, config)

    def replace_config(self, bot_id: str, config: BotConfig) -> BotConfig:
        with self._lock:
            return self._apply_config(self._entry(bot_id), config)

    def reset_config(self, bot_id: str) -> BotConfig:
        with self._lock:
            entry = self._entry(bot_id)
            config = self._apply_config(entry, entry.default_config)
            logger.info("CONFIG_RESET: bot=%s", bot_id)
            return config

    def clear_history(self, bot_id: str) -> BotStats:
        with self._lock:
            entry = self._entry(bot_id)
            entry.bot.clear_history()
            self._persist(entry)
            logger.info("HISTORY_CLEARED: bot=%s", bot_id)
            return entry.bot.stats()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def tick(self, prices: Mapping[str, float]) -> List[BotTickResult]:
        with self._lock:
            results: List[BotTickResult] = []
            for entry in self._bots.values():
                try:
                    result = entry.bot.process_tick(prices)
                except Exception:
                    logger.exception("BOT_TICK_FAILED: bot=%s", entry.bot.id)
                    results.append(BotTickResult(bot_id=entry.bot.id, skipped=True, failed=True))
                    continue
                if not result.skipped:
                    self._persist(entry)
                results.append(result)

            logger.debug(
                "MANAGER_TICK: pairs=%d bots=%d opened=%d closed=%d",
                len(prices),
                len(results),
                sum(len(r.opened) for r in results),
                sum(len(r.closed) for r in results),
            )
            return results

    def start_auto_pricing(self, feed: PriceFeed) -> Unsubscribe:
        unsubscribe = feed.subscribe(self.tick)
        logger.info("AUTO_PRICING_STARTED: feed=%s", type(feed).__name__)
        return unsubscribe

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def bot_ids(self) -> List[str]:
        with self._lock:
            return list(self._bots)

    def get_bot(self, bot_id: str) -> TradingBot:
        """Detached copy of the bot, safe to read while ticks go on.

        Changes made to the copy never reach the registry.
        """
        with self._lock:
            bot = self._entry(bot_id).bot
            return TradingBot.from_record(bot.id, bot.config, bot.to_record(), clock=self._clock)

    def get_config(self, bot_id: str) -> BotConfig:
        with self._lock:
            return self._entry(bot_id).bot.config

    def get_default_config(self, bot_id: str) -> BotConfig:
        with self._lock:
            return self._entry(bot_id).default_config.model_copy(deep=True)

    def get_stats(self, bot_id: str, trade_limit: Optional[int] = None) -> BotStats:
        with self._lock:
            return self._entry(bot_id).bot.stats(trade_limit)

    def get_all_stats(self, trade_limit: Optional[int] = None) -> List[BotStats]:
        with self._lock:
            return [entry.bot.stats(trade_limit) for entry in self._bots.values()]

    def get_aggregated_stats(self, trade_limit: int = 50) -> ManagerStats:
        with self._lock:
            bots = self.get_all_stats()
            trades = [t for entry in self._bots.values() for t in entry.bot.trades]

        trades.sort(key=lambda t: t.closed_at, reverse=True)
        total_trades = sum(b.trades_count for b in bots)
        total_wins = sum(b.wins_count for b in bots)
        return ManagerStats(
            total_bots=len(bots),
            total_invested=sum(b.invested_capital for b in bots),
            total_current_value=sum(b.current_value for b in bots),
            total_pnl=sum(b.total_pnl for b in bots),
            win_rate=total_wins / total_trades if total_trades else 0.0,
            total_positions=sum(len(b.positions) for b in bots),
            total_trades=total_trades,
            trades=trades[:trade_limit],
            bots=[b.model_copy(update={"trades": b.trades[:trade_limit]}) for b in bots],
        )


def create_bot_manager(settings: Optional[Settings] = None) -> BotManager:
    settings = settings or get_settings()
    store: Store = JsonFileStore(settings.store_dir) if settings.store_dir else InMemoryStore()
    logger.info(
        "MANAGER_CONFIG: store=%s seed=%s default_capital=%s default_pairs=%s",
        type(store).__name__,
        settings.seed,
        settings.default_capital,
        ",".join(settings.default_pairs),
    )
    manager = BotManager(
        store,
        seed=settings.seed,
        default_pairs=settings.default_pairs,
        default_capital=settings.default_capital,
    )
    manager.load()
    return manager
