"""Service factory - wires storage, clock and the core components together"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from trustlend.config import Settings, settings
from trustlend.domain.clock import Clock, SystemClock
from trustlend.domain.fraud import FraudDetector, SimilarityCheck, velocity_only
from trustlend.domain.hashing import HashingService
from trustlend.domain.pricing import PricingEngine
from trustlend.infrastructure.database.session import build_engine, build_session_factory, create_schema
from trustlend.infrastructure.observability.logging import setup_logging
from trustlend.services.ledger import LedgerService
from trustlend.services.parameters import ParameterService
from trustlend.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything an outer layer needs, sharing one engine and one pricing cache"""

    engine: Engine
    pricing: PricingEngine
    parameters: ParameterService
    ledger: LedgerService


def create_services(
    config: Settings = settings,
    clock: Optional[Clock] = None,
    similarity: SimilarityCheck = velocity_only,
    engine: Optional[Engine] = None,
    bootstrap_parameters: bool = True,
) -> Services:
    """
    Build the service graph.

    Creates the schema if missing and, unless disabled, publishes and
    activates the baseline parameter table when no version is active yet.
    """
    engine = engine or build_engine(config)
    create_schema(engine)

    uow = UnitOfWork(
        build_session_factory(engine),
        HashingService(short_length=config.short_hash_length),
        clock or SystemClock(),
    )
    pricing = PricingEngine()
    parameters = ParameterService(uow, pricing)
    ledger = LedgerService(
        uow,
        pricing,
        FraudDetector(
            window_seconds=config.fraud_window_seconds,
            high_severity_threshold=config.fraud_high_severity_threshold,
            concentration_threshold=config.fraud_concentration_threshold,
            similarity=similarity,
        ),
        config=config,
    )

    if bootstrap_parameters:
        parameters.bootstrap()

    return Services(engine=engine, pricing=pricing, parameters=parameters, ledger=ledger)


def main() -> None:
    """Initialise logging, schema and baseline parameters for the configured database"""
    setup_logging(settings.log_level)
    services = create_services()
    active = services.parameters.active()
    services.engine.dispose()
    logger.info("Ledger storage ready", extra={"parameters_version": active.version})


if __name__ == "__main__":
    main()
