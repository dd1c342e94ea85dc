"""
Trading Engine Orchestrator - Options Trade-Generation Engine

Run controller for one recompute cycle:

    NOT_STARTED -> REGIME_COMPUTED -> SIGNALS_COMPUTED
                -> CANDIDATES_GENERATED -> RANKED -> DONE

1. validate settings (fatal before anything is fetched)
2. compute the market regime and its narrative
3. analyze every symbol in the universe (partial-failure tolerant)
4. per symbol, scan the first few expirations inside a broad DTE band and
   run every strategy that opts in
5. score and rank the full candidate set once
6. aggregate stats and the error list

A failing symbol is recorded in stats.errors and never aborts the run.

The engine owns its CacheRegistry; call close() to stop the sweeper and
drop cached data.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..concurrency import gather_settled, with_timeout
from ..custom_types import MarketRegime, SymbolSignals
from ..data.cache import CacheRegistry, CachedMarketDataProvider
from ..data.provider import MarketDataProvider
from ..signals.indicators import DEFAULT_THRESHOLDS, RegimeThresholds
from ..signals.regime_detector import RegimeDetector
from ..signals.symbol_analyzer import SymbolAnalyzer
from ..strategies.base import StrategyContext, TradePacket
from ..strategies.registry import StrategyRegistry
from ..utils import DateLike, calculate_dte, to_serializable, utc_now
from .narrative import MarketNarrative, NarrativeGenerator
from .ranker import RankingOptions, TradeRanker
from .scoring import DEFAULT_WEIGHTS, ScoringWeights, TradeScorer
from .settings import DEFAULT_SYMBOLS, RiskPreset, TradingSettings, ensure_valid_settings

logger = logging.getLogger(__name__)


class RunPhase(Enum):
    NOT_STARTED = "not_started"
    REGIME_COMPUTED = "regime_computed"
    SIGNALS_COMPUTED = "signals_computed"
    CANDIDATES_GENERATED = "candidates_generated"
    RANKED = "ranked"
    DONE = "done"


@dataclass(frozen=True)
class EngineConfig:
    """Engine-level knobs that are not part of the caller's TradingSettings"""
    provider_timeout_seconds: float = 30.0
    min_scan_dte: int = 14
    max_scan_dte: int = 60
    expirations_per_symbol: int = 4
    analyzer_batch_size: int = 5
    benchmark: str = "SPY"
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
    scoring_weights: ScoringWeights = DEFAULT_WEIGHTS
    cache_ttls: Optional[Dict[str, float]] = None
    cache_sweep_interval_seconds: Optional[float] = None


@dataclass(frozen=True)
class RecomputeOptions:
    workspace_id: str = "local"
    settings_version_id: Optional[str] = None
    risk_preset: Optional[RiskPreset] = None
    symbols: Sequence[str] = DEFAULT_SYMBOLS
    earnings_dates: Optional[Mapping[str, Optional[DateLike]]] = None
    min_score: float = 40
    top_per_strategy: int = 3
    max_per_symbol: int = 2
    apply_risk_budget: bool = True

    def ranking_options(self) -> RankingOptions:
        return RankingOptions(
            min_score=self.min_score,
            top_per_strategy=self.top_per_strategy,
            max_per_symbol=self.max_per_symbol,
            apply_risk_budget=self.apply_risk_budget,
        )


@dataclass(frozen=True)
class RunStats:
    symbols_processed: int
    symbols_analyzed: int
    candidates_generated: int
    candidates_after_filtering: int
    by_strategy: Dict[str, int]
    errors: List[str]
    duration_ms: int

    @property
    def partial_failure(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class RecomputeResult:
    run_id: str
    started_at: datetime
    finished_at: datetime
    regime: MarketRegime
    narrative: MarketNarrative
    symbol_signals: Dict[str, SymbolSignals]
    all_candidates: List[TradePacket]
    ranked_candidates: List[TradePacket]
    stats: RunStats
    phase: RunPhase = RunPhase.DONE
    settings_version_id: Optional[str] = None
    workspace_id: str = "local"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


class TradingEngine:
    """
    Trade-generation engine.

    Usage:
        engine = TradingEngine(create_market_data_provider("mock"))
        result = await engine.recompute(get_default_settings("balanced"),
                                        RecomputeOptions(symbols=["AAPL", "SPY"]))
        await engine.close()
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        config: Optional[EngineConfig] = None,
        strategies: Optional[StrategyRegistry] = None,
        cache_registry: Optional[CacheRegistry] = None
    ):
        self.config = config or EngineConfig()
        self.cache_registry = cache_registry or CacheRegistry(ttls=self.config.cache_ttls)
        self.provider = CachedMarketDataProvider(provider, self.cache_registry)
        self.strategies = strategies or StrategyRegistry()
        self.ranker = TradeRanker(TradeScorer(self.config.scoring_weights))
        self.narrative_generator = NarrativeGenerator(self.config.benchmark)
        self.regime_detector = RegimeDetector(
            self.provider,
            benchmark=self.config.benchmark,
            thresholds=self.config.thresholds,
            timeout_seconds=self.config.provider_timeout_seconds,
        )
        self.symbol_analyzer = SymbolAnalyzer(
            self.provider,
            thresholds=self.config.thresholds,
            timeout_seconds=self.config.provider_timeout_seconds,
            batch_size=self.config.analyzer_batch_size,
        )
        self.phase = RunPhase.NOT_STARTED
        self.current_run_id: Optional[str] = None

        if self.config.cache_sweep_interval_seconds:
            self.cache_registry.start_sweeper(self.config.cache_sweep_interval_seconds)

    async def recompute(self, settings: TradingSettings, options: Optional[RecomputeOptions] = None) -> RecomputeResult:
        """
        Run a full recompute cycle.

        Raises:
            SettingsValidationError: When settings violate a hard cap
        """
        ensure_valid_settings(settings)
        options = options or RecomputeOptions()
        symbols = list(dict.fromkeys(options.symbols))

        run_id = str(uuid.uuid4())
        started_at = utc_now()
        clock_start = time.perf_counter()
        self.current_run_id = run_id
        self.phase = RunPhase.NOT_STARTED
        errors: List[str] = []

        settings_version_id = options.settings_version_id or settings.version_id or "default"
        risk_preset = options.risk_preset or settings.risk_preset

        logger.info(f"[{run_id}] Recompute started for {len(symbols)} symbols ({risk_preset.value})")

        regime = await self.regime_detector.compute_market_regime(symbols)
        self.phase = RunPhase.REGIME_COMPUTED
        errors.extend(regime.data_quality.source_errors)
        narrative = self.narrative_generator.generate_narrative(regime, options.workspace_id)

        logger.info(f"[{run_id}] Analyzing {len(symbols)} symbols...")
        symbol_signals = await self.symbol_analyzer.analyze_symbols(symbols, settings, options.earnings_dates)
        self.phase = RunPhase.SIGNALS_COMPUTED

        analyzed = [s for s in symbols if s in symbol_signals]
        for symbol in symbols:
            if symbol not in symbol_signals:
                errors.append(f"{symbol}: no signals (analysis failed)")

        logger.info(f"[{run_id}] Generating candidates for {len(analyzed)} symbols...")
        outcomes = await gather_settled(
            analyzed,
            lambda s: self._generate_candidates_for_symbol(
                s, symbol_signals[s], regime, settings, options, run_id,
                settings_version_id, risk_preset
            ),
            concurrency=self.config.analyzer_batch_size,
        )

        raw_candidates: List[TradePacket] = []
        for outcome in outcomes:
            if outcome.ok:
                raw_candidates.extend(outcome.value)
            else:
                logger.warning(f"[{run_id}] Candidate generation failed for {outcome.key}: {outcome.error}")
                errors.append(f"{outcome.key}: {outcome.error}")
        self.phase = RunPhase.CANDIDATES_GENERATED

        logger.info(f"[{run_id}] Ranking {len(raw_candidates)} candidates...")
        all_candidates = self.ranker.score_all(raw_candidates)
        ranked = self.ranker.apply_all_filters(all_candidates, settings, options.ranking_options())
        self.phase = RunPhase.RANKED

        stats = RunStats(
            symbols_processed=len(symbols),
            symbols_analyzed=len(symbol_signals),
            candidates_generated=len(all_candidates),
            candidates_after_filtering=len(ranked),
            by_strategy=dict(Counter(p.strategy_type.value for p in ranked)),
            errors=errors,
            duration_ms=int((time.perf_counter() - clock_start) * 1000),
        )
        self.phase = RunPhase.DONE

        if errors:
            logger.warning(f"[{run_id}] Completed with {len(errors)} errors")
        logger.info(
            f"[{run_id}] Recompute done: {stats.candidates_generated} generated, "
            f"{stats.candidates_after_filtering} ranked in {stats.duration_ms}ms"
        )

        return RecomputeResult(
            run_id=run_id,
            started_at=started_at,
            finished_at=utc_now(),
            regime=regime,
            narrative=narrative,
            symbol_signals=symbol_signals,
            all_candidates=all_candidates,
            ranked_candidates=ranked,
            stats=stats,
            phase=self.phase,
            settings_version_id=settings_version_id,
            workspace_id=options.workspace_id,
            metadata={"provider": self.provider.name, "risk_preset": risk_preset.value},
        )

    def select_expirations(self, expirations: Sequence[date]) -> List[date]:
        """Future expirations inside the scan band, nearest first, capped per symbol"""
        in_band = sorted(
            exp for exp in expirations
            if self.config.min_scan_dte <= calculate_dte(exp) <= self.config.max_scan_dte
        )
        return in_band[:self.config.expirations_per_symbol]

    async def _generate_candidates_for_symbol(
        self,
        symbol: str,
        signals: SymbolSignals,
        regime: MarketRegime,
        settings: TradingSettings,
        options: RecomputeOptions,
        run_id: str,
        settings_version_id: str,
        risk_preset: RiskPreset
    ) -> List[TradePacket]:
        timeout = self.config.provider_timeout_seconds
        quote = await with_timeout(self.provider.get_quote(symbol), timeout, f"quote {symbol}")
        expirations = await with_timeout(
            self.provider.get_option_expirations(symbol), timeout, f"expirations {symbol}"
        )

        packets: List[TradePacket] = []
        for expiration in self.select_expirations(expirations):
            chain = await with_timeout(
                self.provider.get_option_chain(symbol, expiration), timeout, f"chain {symbol} {expiration}"
            )
            context = StrategyContext(
                quote=quote,
                chain=chain,
                signals=signals,
                regime=regime,
                settings=settings,
                settings_version_id=settings_version_id,
                risk_preset=risk_preset,
                workspace_id=options.workspace_id,
                recompute_run_id=run_id,
            )
            for strategy in self.strategies:
                if not strategy.should_consider(context):
                    continue
                for candidate in strategy.find_candidates(context):
                    packets.append(strategy.candidate_to_packet(candidate, context))

        logger.debug(f"{symbol}: {len(packets)} candidates")
        return packets

    async def get_market_regime(self, symbols: Optional[Sequence[str]] = None) -> MarketRegime:
        """Regime only, cached for the regime TTL per symbol basket"""
        basket = list(symbols or DEFAULT_SYMBOLS)
        key = "regime:" + ",".join(sorted(set(basket)))
        return await self.cache_registry.get("regime").memoize(
            key, lambda: self.regime_detector.compute_market_regime(basket)
        )

    async def generate_market_narrative(
        self,
        symbols: Optional[Sequence[str]] = None,
        workspace_id: str = "local"
    ) -> MarketNarrative:
        regime = await self.get_market_regime(symbols)
        return self.narrative_generator.generate_narrative(regime, workspace_id)

    async def analyze_symbol(
        self,
        symbol: str,
        settings: TradingSettings,
        earnings_date: Optional[DateLike] = None
    ) -> SymbolSignals:
        """
        Signals for one symbol.

        Raises:
            ProviderError: When the symbol cannot be analyzed
        """
        return await with_timeout(
            self.symbol_analyzer.analyze_symbol(symbol, settings, earnings_date),
            self.config.provider_timeout_seconds,
            f"analyze {symbol}",
        )

    async def close(self) -> None:
        await self.cache_registry.close()
        upstream_close = getattr(self.provider.upstream, "close", None)
        if upstream_close is not None:
            await upstream_close()
        logger.info("Trading engine closed")
