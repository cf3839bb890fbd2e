"""Per-process label enrichment."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from procscope.models import ProcessRecord
from procscope.rules import DEFAULT_ICON, RuleCatalog
from procscope.template import TemplateContext, references_port, resolve

# A "(port ...)" segment already rendered by the template, whatever its value
_PORT_SEGMENT = re.compile(r"\(port [^()]*\)")


@dataclass(frozen=True)
class Enrichment:
    """Resolved presentation for one process."""

    label: str
    icon: str
    rule_name: str | None = None  # None = fallback, no rule matched


class Enricher:
    """Applies a rule catalog to process records.

    Holds no mutable state; one instance may be shared across refreshes and
    threads.
    """

    def __init__(
        self,
        catalog: RuleCatalog,
        default_icon: str = DEFAULT_ICON,
        port_suffix: bool = True,
    ) -> None:
        self.catalog = catalog
        self.default_icon = default_icon
        self.port_suffix = port_suffix

    def enrich(self, record: ProcessRecord) -> Enrichment:
        """Label and icon for record. Pure function of (record, catalog)."""
        fallback = record.name or str(record.pid)
        rule = self.catalog.find_match(record)

        if rule is not None:
            context = TemplateContext.from_record(
                record, match_argv_index=rule.match.regex_argv_index(record)
            )
            label = resolve(rule.template, context) or fallback
            result = Enrichment(label=label, icon=rule.icon, rule_name=rule.name)
        else:
            result = Enrichment(label=fallback, icon=self.default_icon)

        return self._with_port_suffix(result, record, rule.template if rule else None)

    def enrich_batch(self, records: Iterable[ProcessRecord]) -> dict[int, Enrichment]:
        """Enrich many records, keeping only those a rule matched."""
        results = {}
        for record in records:
            enrichment = self.enrich(record)
            if enrichment.rule_name is not None:
                results[record.pid] = enrichment
        return results

    def _with_port_suffix(
        self, enrichment: Enrichment, record: ProcessRecord, template: str | None
    ) -> Enrichment:
        """Append " (port N)" unless the label already carries a port segment."""
        port = record.primary_port
        if not self.port_suffix or port is None:
            return enrichment
        if template is not None and references_port(template):
            return enrichment

        if _PORT_SEGMENT.search(enrichment.label):
            return enrichment
        return Enrichment(
            label=f"{enrichment.label} (port {port})",
            icon=enrichment.icon,
            rule_name=enrichment.rule_name,
        )


def enrich(record: ProcessRecord, catalog: RuleCatalog) -> tuple[str, str]:
    """Return (label, icon) for record using catalog."""
    result = Enricher(catalog).enrich(record)
    return result.label, result.icon
