"""System parameter governance - publish immutable versions, switch the active one"""

import logging
import re
from dataclasses import replace
from typing import Optional, Sequence

from trustlend.domain.exceptions import Conflict, IntegrityViolation, NotFound, ValidationError
from trustlend.domain.models import EventType, PricingTier, SystemParameters
from trustlend.domain.pricing import DEFAULT_PRICING_TIERS, PricingEngine, pricing_table_errors
from trustlend.domain.storage import Storage
from trustlend.services.schemas import PublishParametersRequest, TierSchema, parse
from trustlend.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

INITIAL_VERSION = "v1.0.0"
DEFAULT_GRACE_PERIOD_SECONDS = 86_400
DEFAULT_CADENCE_SECONDS = 30 * 86_400


def next_version(current: str) -> str:
    """Bump the patch number: v1.2.3 -> v1.2.4; unparseable input restarts at v1.0.0"""
    match = re.fullmatch(r"v(\d+)\.(\d+)\.(\d+)", current or "")
    if not match:
        return INITIAL_VERSION
    major, minor, patch = match.groups()
    return f"v{major}.{minor}.{int(patch) + 1}"


def load_active_parameters(storage: Storage, engine: PricingEngine) -> SystemParameters:
    """Fetch the active version and run it through the engine's load-time validation"""
    parameters = storage.parameters.get_active()
    if parameters is None:
        raise IntegrityViolation("no active system parameters")
    return engine.load(parameters)


def load_parameters(storage: Storage, engine: PricingEngine, version: str) -> SystemParameters:
    if engine.is_loaded(version):
        return engine.parameters(version)
    parameters = storage.parameters.get(version)
    if parameters is None:
        raise NotFound("SystemParameters", version)
    return engine.load(parameters)


class ParameterService:
    """Operator-facing parameter management"""

    def __init__(self, uow: UnitOfWork, engine: PricingEngine):
        self.uow = uow
        self.engine = engine

    def publish_parameters(
        self,
        version: str,
        tiers: Sequence[PricingTier],
        grace_period_seconds: int,
        installment_cadence_seconds: int,
        default_after_consecutive_overdue: Optional[int] = None,
        activate: bool = False,
    ) -> SystemParameters:
        """
        Store a new parameter version. Published versions never change.

        Raises:
            ValidationError: malformed values or a table that breaks the tier invariant
            Conflict: the version already exists
        """
        request = parse(
            PublishParametersRequest,
            version=version,
            tiers=[TierSchema(**t.to_dict()) if isinstance(t, PricingTier) else t for t in tiers],
            grace_period_seconds=grace_period_seconds,
            installment_cadence_seconds=installment_cadence_seconds,
            default_after_consecutive_overdue=default_after_consecutive_overdue,
        )
        table = tuple(t.to_tier() for t in request.tiers)
        errors = pricing_table_errors(table)
        if errors:
            raise ValidationError("invalid pricing table: " + "; ".join(errors))

        with self.uow.begin() as tx:
            if tx.storage.parameters.get(request.version) is not None:
                raise Conflict(f"parameters {request.version} already published")

            parameters = SystemParameters(
                version=request.version,
                tiers=table,
                grace_period_seconds=request.grace_period_seconds,
                installment_cadence_seconds=request.installment_cadence_seconds,
                default_after_consecutive_overdue=request.default_after_consecutive_overdue,
                created_at=self.uow.clock.now(),
            )
            tx.storage.parameters.add(parameters)
            tx.events.append(
                request.version,
                EventType.PARAMETERS_PUBLISHED,
                {
                    "tiers": [t.to_dict() for t in table],
                    "grace_period_seconds": parameters.grace_period_seconds,
                    "installment_cadence_seconds": parameters.installment_cadence_seconds,
                    "default_after_consecutive_overdue": parameters.default_after_consecutive_overdue,
                },
            )
            if activate:
                self._activate(tx, request.version)
                parameters = replace(parameters, is_active=True)

        logger.info("Parameters published", extra={"parameters_version": request.version, "activated": activate})
        return parameters

    def activate_parameters(self, version: str) -> SystemParameters:
        with self.uow.begin() as tx:
            self._activate(tx, version)
            return tx.storage.parameters.get(version)

    def _activate(self, tx, version: str) -> None:
        parameters = tx.storage.parameters.get(version)
        if parameters is None:
            raise NotFound("SystemParameters", version)

        previous = tx.storage.parameters.get_active()
        tx.storage.parameters.set_active(version)
        tx.events.append(
            version,
            EventType.PARAMETERS_ACTIVATED,
            {"previous_version": previous.version if previous else None},
        )

    def publish_next_version(self, tiers: Sequence[PricingTier], **kwargs) -> SystemParameters:
        """Publish under the next patch version after the active one"""
        with self.uow.begin() as tx:
            active = tx.storage.parameters.get_active()
        return self.publish_parameters(next_version(active.version if active else ""), tiers, **kwargs)

    def bootstrap(self) -> SystemParameters:
        """Publish and activate the baseline table when nothing is active yet"""
        with self.uow.begin() as tx:
            active = tx.storage.parameters.get_active()
        if active is not None:
            return active
        return self.publish_parameters(
            INITIAL_VERSION,
            DEFAULT_PRICING_TIERS,
            grace_period_seconds=DEFAULT_GRACE_PERIOD_SECONDS,
            installment_cadence_seconds=DEFAULT_CADENCE_SECONDS,
            activate=True,
        )

    def active(self) -> SystemParameters:
        with self.uow.begin() as tx:
            return load_active_parameters(tx.storage, self.engine)

    def get(self, version: str) -> SystemParameters:
        """Read a version from storage, checked against the engine cache"""
        with self.uow.begin() as tx:
            parameters = tx.storage.parameters.get(version)
        if parameters is None:
            raise NotFound("SystemParameters", version)
        return self.engine.load(parameters)
