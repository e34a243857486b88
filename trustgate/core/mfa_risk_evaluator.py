"""
Adaptive MFA Risk Evaluator
---------------------------
Decides whether a login or action needs step-up MFA from the device trust
state plus per-request risk factors.

Location:
trustgate/core/mfa_risk_evaluator.py

Rules:
- untrusted device        -> MFA, high
- shared device           -> MFA, medium
- sensitive action        -> MFA, high
- new location            -> MFA, high
- employee admin action   -> MFA, high

The decision starts out as "MFA required" and is only relaxed when every
rule passes. Any exception during evaluation returns the required-MFA
decision.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from trustgate.core.config import settings
from trustgate.db.models.trusted_device_model import OwnerType, TrustedDeviceModel
from trustgate.services.trusted_device_service import TrustedDeviceService

logger = logging.getLogger(__name__)


RISK_LEVELS = ("low", "medium", "high")


def _escalate(current: str, candidate: str) -> str:
    return candidate if RISK_LEVELS.index(candidate) > RISK_LEVELS.index(current) else current


@dataclass
class RiskFactors:
    action: Optional[str] = None
    ip_address: Optional[str] = None
    new_location: bool = False


@dataclass
class MFADecision:
    require_mfa: bool = True
    reasons: List[str] = field(default_factory=list)
    risk_level: str = "high"
    trusted_device: Optional[TrustedDeviceModel] = None
    evaluated_at: Optional[datetime] = None
    error: bool = False


class MFARiskEvaluator:
    """
    Rule-based step-up MFA evaluator.
    Rules live in a dictionary keyed by name; each contributes its message
    and risk level when triggered.
    """

    RULES = {
        "untrusted_device": {
            "level": "high",
            "message": "Device not registered as trusted",
        },
        "shared_device": {
            "level": "medium",
            "message": "Shared/public device - always require MFA",
        },
        "sensitive_action": {
            "level": "high",
            "message": "Sensitive action '{action}' requires MFA",
        },
        "new_location": {
            "level": "high",
            "message": "Login from new location",
        },
        "admin_action": {
            "level": "high",
            "message": "Administrative action requires MFA",
        },
    }

    ERROR_MESSAGE = "Error checking trusted device - defaulting to MFA required"

    def __init__(self, registry: TrustedDeviceService, sensitive_actions: Optional[Iterable[str]] = None):
        self.registry = registry
        if sensitive_actions is None:
            sensitive_actions = settings.SENSITIVE_ACTIONS
        self.sensitive_actions = {a.lower() for a in sensitive_actions}

    def is_sensitive_action(self, action: Optional[str]) -> bool:
        return bool(action) and action.lower() in self.sensitive_actions

    async def evaluate(
        self,
        owner_id: str,
        owner_type: str,
        device_fingerprint: str,
        risk_factors: Optional[RiskFactors] = None,
    ) -> MFADecision:
        """
        Evaluate the MFA requirement for one request.

        Parameters
        ----------
        owner_id, owner_type : str
            Authenticated principal
        device_fingerprint : str
            Client-supplied fingerprint
        risk_factors : RiskFactors
            Action, caller IP and new-location flag

        Returns
        -------
        MFADecision
            require_mfa is True unless the device is trusted, not shared
            and no risk factor fired.
        """
        risk_factors = risk_factors or RiskFactors()
        try:
            decision = await self._run_rules(owner_id, owner_type, device_fingerprint, risk_factors)
        except Exception:
            logger.exception("Error determining MFA requirement for %s %s", owner_type, owner_id)
            return MFADecision(
                require_mfa=True,
                reasons=[self.ERROR_MESSAGE],
                risk_level="high",
                trusted_device=None,
                evaluated_at=self.registry.clock(),
                error=True,
            )

        logger.info(
            "MFA decision for %s %s from %s: %s (%s)",
            owner_type, owner_id, risk_factors.ip_address or "unknown",
            "REQUIRED" if decision.require_mfa else "SKIPPED",
            ", ".join(decision.reasons) or "Trusted device",
        )
        return decision

    async def _run_rules(
        self,
        owner_id: str,
        owner_type: str,
        device_fingerprint: str,
        risk_factors: RiskFactors,
    ) -> MFADecision:
        decision = MFADecision(evaluated_at=self.registry.clock())
        level = "low"

        def trigger(rule: str, **fmt) -> None:
            nonlocal level
            decision.reasons.append(self.RULES[rule]["message"].format(**fmt))
            level = _escalate(level, self.RULES[rule]["level"])

        # ---------------------------
        # RULE 1: DEVICE TRUST
        # ---------------------------
        trusted_device = await self.registry.check_trust(owner_id, owner_type, device_fingerprint)
        decision.trusted_device = trusted_device
        if trusted_device is None:
            trigger("untrusted_device")

        # ---------------------------
        # RULE 2: SHARED DEVICE
        # Registration refuses shared devices, but migrated data may still carry one
        # ---------------------------
        elif trusted_device.is_shared_device:
            trigger("shared_device")

        # ---------------------------
        # RULE 3: SENSITIVE ACTION
        # ---------------------------
        action = risk_factors.action
        if self.is_sensitive_action(action):
            trigger("sensitive_action", action=action)

        # ---------------------------
        # RULE 4: NEW LOCATION
        # ---------------------------
        if risk_factors.new_location:
            trigger("new_location")

        # ---------------------------
        # RULE 5: EMPLOYEE ADMIN ACTION
        # ---------------------------
        if owner_type == OwnerType.EMPLOYEE.value and action and "admin" in action.lower():
            trigger("admin_action")

        # Only an empty reason trail relaxes the default
        if not decision.reasons:
            decision.require_mfa = False
        decision.risk_level = level
        return decision
