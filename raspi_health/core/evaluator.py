"""
Map readings to severities.

Everything here is a pure function of the sample and its threshold.
"""

from typing import Optional

from ..signals.models import (
    THROTTLE_DESCRIPTIONS,
    Finding,
    Reading,
    Sample,
    Severity,
    SignalKind,
    Threshold,
    ThrottleFlags,
    Unavailable,
)

NUMERIC_KINDS = {
    SignalKind.TEMPERATURE,
    SignalKind.DISK_USAGE,
    SignalKind.SD_CARD_ERRORS,
    SignalKind.VOLTAGE,
}


def evaluate_numeric(value: float, threshold: Optional[Threshold]) -> Severity:
    """value >= critical -> CRITICAL; >= warning -> WARNING; else NORMAL."""
    if threshold is None:
        return Severity.NORMAL
    if value >= threshold.critical_level:
        return Severity.CRITICAL
    if value >= threshold.warning_level:
        return Severity.WARNING
    return Severity.NORMAL


def evaluate_throttle(flags: ThrottleFlags) -> Severity:
    """Any current flag is critical; flags only seen since boot are a warning."""
    if flags.any_now:
        return Severity.CRITICAL
    if flags.any_since_boot:
        return Severity.WARNING
    return Severity.NORMAL


def evaluate(sample: Sample, threshold: Optional[Threshold] = None) -> Severity:
    """Severity of one sample. Unavailable samples are NORMAL."""
    if isinstance(sample, Unavailable):
        return Severity.NORMAL

    kind = sample.kind
    if kind in NUMERIC_KINDS:
        return evaluate_numeric(float(sample.value), threshold)
    if kind == SignalKind.THROTTLE:
        return evaluate_throttle(sample.value)
    if kind in (SignalKind.SERVICE_STATE, SignalKind.SMART_HEALTH, SignalKind.NETWORK):
        return Severity.NORMAL if sample.value else Severity.CRITICAL
    if kind == SignalKind.DNS:
        return Severity.NORMAL if sample.value else Severity.WARNING
    if kind == SignalKind.CONTAINER_STATE:
        return Severity.WARNING if sample.value else Severity.NORMAL

    raise ValueError(f"No evaluation rule for {kind}")


def _issue_for(reading: Reading, severity: Severity) -> Optional[str]:
    if severity == Severity.NORMAL:
        return None
    return {
        SignalKind.SERVICE_STATE: "ServiceDown",
        SignalKind.NETWORK: "NetworkUnreachable",
        SignalKind.DNS: "DnsFailure",
    }.get(reading.kind, "ThresholdBreach")


def describe(reading: Reading, severity: Severity, threshold: Optional[Threshold]) -> str:
    """Human-readable one-line description of an evaluated reading."""
    kind = reading.kind
    label = reading.kind.value.replace("_", " ")
    if reading.subject:
        label = f"{label} {reading.subject}"

    if kind in NUMERIC_KINDS:
        text = f"{label}: {reading.display_value()}"
        if threshold is not None and severity == Severity.CRITICAL:
            text += f" (critical threshold {threshold.critical_level:g}{reading.unit})"
        elif threshold is not None and severity == Severity.WARNING:
            text += f" (warning threshold {threshold.warning_level:g}{reading.unit})"
        return text

    if kind == SignalKind.THROTTLE:
        flags = reading.value
        active = [THROTTLE_DESCRIPTIONS[bit] for bit in flags.active()]
        if not active:
            return f"throttling: none ({flags})"
        return f"throttling {flags}: {'; '.join(active)}"

    if kind == SignalKind.SERVICE_STATE:
        return f"{reading.subject}: {'active' if reading.value else 'INACTIVE'}"

    if kind == SignalKind.SMART_HEALTH:
        return f"SMART {reading.subject}: {'PASSED' if reading.value else 'FAILED'}"

    if kind == SignalKind.CONTAINER_STATE:
        exited = reading.details.get("exited", [])
        if not exited:
            return "containers: none exited"
        return f"exited containers: {', '.join(exited)}"

    if kind == SignalKind.NETWORK:
        targets = reading.details.get("targets", {})
        failed = [target for target, ok in targets.items() if not ok]
        if not reading.value:
            return "no external connectivity (all probe targets failed)"
        if failed:
            return f"connectivity OK (unreachable: {', '.join(failed)})"
        return "connectivity OK"

    if kind == SignalKind.DNS:
        return f"DNS resolution of {reading.subject}: {'OK' if reading.value else 'FAILED'}"

    return f"{label}: {reading.display_value()}"


def assess(sample: Sample, threshold: Optional[Threshold] = None) -> Finding:
    """Evaluate a sample and wrap the result as a ``Finding``."""
    severity = evaluate(sample, threshold)

    if isinstance(sample, Unavailable):
        label = sample.kind.value.replace("_", " ")
        if sample.subject:
            label = f"{label} {sample.subject}"
        return Finding(
            key=sample.key,
            kind=sample.kind,
            subject=sample.subject,
            severity=severity,
            message=f"{label}: unmonitored ({sample.reason})",
            sample=sample,
            unmonitored=True,
            issue="SensorUnavailable",
        )

    return Finding(
        key=sample.key,
        kind=sample.kind,
        subject=sample.subject,
        severity=severity,
        message=describe(sample, severity, threshold),
        sample=sample,
        issue=_issue_for(sample, severity),
    )
