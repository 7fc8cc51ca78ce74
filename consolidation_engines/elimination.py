"""
Module: consolidation_engines.elimination
Responsibility:
    Evaluate the group's elimination rules across all fully consolidated
    member balances at once and produce the elimination entries that remove
    intercompany balances and transactions from the consolidated totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Runs once per consolidation
    run, after every member has been translated and consolidated.

Invariants enforced:
    - Rules run in ascending priority, ties broken by rule id.
    - Entries are additive. Each intercompany balance has an eliminable
      amount that rules consume; no rule eliminates the same amount twice.
      A rule that finds a matched pair already consumed posts nothing and
      raises INTERCOMPANY_ALREADY_ELIMINATED as a warning.
    - Every entry sums to zero.
    - Entry ids are uuid5 values derived from rule and company pair, so a
      rerun with identical inputs yields identical ids.

Failure modes:
    - None raised. Unmatched balances and unknown posting accounts come
      back as ValidationIssues; the orchestrator decides whether they fail
      the run.

Audit relevance:
    Each entry names its rule, the companies on both sides and the amount
    eliminated; the difference posted under tolerance is kept separately.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID, uuid5

from consolidation_engines.tracer import traced_engine
from consolidation_kernel.domain.accounts import ConsolidationAccounts
from consolidation_kernel.domain.group import (
    HUNDRED,
    ConsolidationMember,
    EliminationRule,
    EliminationTreatment,
    EliminationType,
)
from consolidation_kernel.domain.ledger import (
    AccountCategory,
    AccountType,
    IssueCode,
    TrialBalanceLine,
    ValidationIssue,
)
from consolidation_kernel.domain.values import Currency
from consolidation_kernel.logging_config import get_logger

logger = get_logger("engines.elimination")

ZERO = Decimal("0")
ONE = Decimal("1")

ENTRY_NAMESPACE = UUID("6f1d2c5e-8a43-5b0e-9d7a-2f4c1e0b3a91")

# (company_id, account_id, intercompany_partner_id)
BalanceKey = tuple[UUID, str, UUID | None]


@dataclass(frozen=True)
class EliminationLine:
    """One posting of an elimination entry, debit-positive."""

    company_id: UUID
    account_id: str
    account_name: str
    account_type: AccountType
    amount: Decimal
    category: AccountCategory | None = None

    def to_dict(self) -> dict:
        return {
            "company_id": str(self.company_id),
            "account_id": self.account_id,
            "account_name": self.account_name,
            "account_type": self.account_type.value,
            "amount": str(self.amount),
            "category": self.category.value if self.category else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EliminationLine:
        category = data.get("category")
        return cls(
            company_id=UUID(data["company_id"]),
            account_id=data["account_id"],
            account_name=data["account_name"],
            account_type=AccountType(data["account_type"]),
            amount=Decimal(data["amount"]),
            category=AccountCategory(category) if category else None,
        )


@dataclass(frozen=True)
class EliminationEntry:
    entry_id: UUID
    rule_id: UUID
    rule_name: str
    elimination_type: EliminationType
    from_company_id: UUID
    to_company_id: UUID
    amount: Decimal
    lines: tuple[EliminationLine, ...]
    difference: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    def to_dict(self) -> dict:
        return {
            "entry_id": str(self.entry_id),
            "rule_id": str(self.rule_id),
            "rule_name": self.rule_name,
            "elimination_type": self.elimination_type.value,
            "from_company_id": str(self.from_company_id),
            "to_company_id": str(self.to_company_id),
            "amount": str(self.amount),
            "lines": [line.to_dict() for line in self.lines],
            "difference": str(self.difference),
        }

    @classmethod
    def from_dict(cls, data: dict) -> EliminationEntry:
        return cls(
            entry_id=UUID(data["entry_id"]),
            rule_id=UUID(data["rule_id"]),
            rule_name=data["rule_name"],
            elimination_type=EliminationType(data["elimination_type"]),
            from_company_id=UUID(data["from_company_id"]),
            to_company_id=UUID(data["to_company_id"]),
            amount=Decimal(data["amount"]),
            lines=tuple(EliminationLine.from_dict(d) for d in data["lines"]),
            difference=Decimal(data["difference"]),
        )


@dataclass(frozen=True)
class EliminationOutcome:
    entries: tuple[EliminationEntry, ...] = field(default=())
    issues: tuple[ValidationIssue, ...] = field(default=())


def entry_id_for(rule_id: UUID, from_company_id: UUID, to_company_id: UUID) -> UUID:
    return uuid5(ENTRY_NAMESPACE, f"{rule_id}:{from_company_id}:{to_company_id}")


class _Ledger:
    """
    Eliminable balances for one evaluation.

    A key's cap is its original amount, or the ownership share of it for
    rules that eliminate only the group's share (dividends, investments).
    available = cap - consumed, clamped at zero when the sign flips.
    """

    def __init__(self, member_balances: Mapping[UUID, Sequence[TrialBalanceLine]], currency: Currency):
        self.currency = currency
        self.original: dict[BalanceKey, Decimal] = {}
        self.meta: dict[BalanceKey, TrialBalanceLine] = {}
        self.consumed: dict[BalanceKey, Decimal] = {}
        self.profit_consumed: dict[tuple[EliminationType, BalanceKey], Decimal] = {}
        for company_id in sorted(member_balances, key=str):
            for line in member_balances[company_id]:
                key = (company_id, line.account_id, line.intercompany_partner_id)
                self.original[key] = self.original.get(key, ZERO) + line.amount
                self.meta.setdefault(key, line)

    def keys(self) -> list[BalanceKey]:
        return sorted(self.original, key=lambda k: (str(k[0]), k[1], str(k[2])))

    def available(self, key: BalanceKey, fraction: Decimal = ONE) -> Decimal:
        original = self.original[key]
        cap = original if fraction == ONE else self.currency.quantize(original * fraction)
        left = cap - self.consumed.get(key, ZERO)
        if left == 0 or (left > 0) != (original > 0):
            return ZERO
        return left

    def consume(self, key: BalanceKey, amount: Decimal) -> None:
        self.consumed[key] = self.consumed.get(key, ZERO) + amount

    def was_consumed(self, keys) -> bool:
        return any(self.consumed.get(k, ZERO) != 0 for k in keys)


class EliminationEvaluator:
    """
    Rule-driven intercompany elimination.

    Contract:
        evaluate() receives the translated contribution lines of every fully
        consolidated company (parent included), keyed by company id, plus
        the member snapshots for ownership lookups.

    Guarantees:
        - Pairwise rules (receivable/payable, revenue/expense, dividend)
          match source lines on company A tagged with partner B against
          target lines on B tagged with A. Either side alone is enough to
          form the pair, so a balance recorded by one company only is
          reported as unmatched.
        - A matched pair whose imbalance is within tolerance is eliminated
          in full; the imbalance goes to the intercompany difference
          account.
        - Investment rules replace the investor's investment and the
          investee's equity share with goodwill.
        - Unrealized-profit rules post source amount x margin from the
          debit account on the seller to the credit account on the buyer.

    Non-goals:
        - Manual (non-automatic) rules; those are posted by users.
    """

    def __init__(self, accounts: ConsolidationAccounts | None = None):
        self._accounts = accounts or ConsolidationAccounts()

    @traced_engine(
        "elimination_evaluation",
        "1.0",
        fingerprint_fields=("rules", "reporting_currency", "default_tolerance", "skip_validation"),
    )
    def evaluate(
        self,
        *,
        rules: Sequence[EliminationRule],
        member_balances: Mapping[UUID, Sequence[TrialBalanceLine]],
        members: Mapping[UUID, ConsolidationMember],
        reporting_currency: str,
        default_tolerance: Decimal | None = None,
        skip_validation: bool = False,
    ) -> EliminationOutcome:
        currency = Currency(reporting_currency)
        ledger = _Ledger(member_balances, currency)
        catalog = self._account_catalog(member_balances)
        companies = set(member_balances)

        entries: list[EliminationEntry] = []
        issues: list[ValidationIssue] = []

        ordered = sorted(
            (r for r in rules if r.is_evaluated),
            key=lambda r: (r.priority, str(r.rule_id)),
        )
        for rule in ordered:
            if rule.elimination_type.is_pairwise:
                self._evaluate_pairwise(
                    rule, ledger, companies, members, default_tolerance,
                    skip_validation, entries, issues,
                )
            elif rule.elimination_type == EliminationType.INVESTMENT:
                self._evaluate_investment(rule, ledger, companies, members, entries, issues)
            else:
                self._evaluate_unrealized_profit(rule, ledger, companies, catalog, entries, issues)

        logger.info(
            "eliminations_evaluated",
            extra={
                "rule_count": len(ordered),
                "entry_count": len(entries),
                "issue_count": len(issues),
            },
        )
        return EliminationOutcome(entries=tuple(entries), issues=tuple(issues))

    # ------------------------------------------------------------------
    # Pairwise
    # ------------------------------------------------------------------

    def _evaluate_pairwise(
        self,
        rule: EliminationRule,
        ledger: _Ledger,
        companies: set[UUID],
        members: Mapping[UUID, ConsolidationMember],
        default_tolerance: Decimal | None,
        skip_validation: bool,
        entries: list[EliminationEntry],
        issues: list[ValidationIssue],
    ) -> None:
        configured = rule.tolerance if rule.tolerance is not None else default_tolerance
        tolerance = max(configured or ZERO, ledger.currency.rounding_tolerance)

        pairs = self._pairs(rule, ledger, companies, include_counterpart=True)
        for source_company, target_company in pairs:
            source_keys = self._side(
                ledger, source_company, target_company, rule.matches_source,
            )
            target_keys = self._side(
                ledger, target_company, source_company, rule.matches_target,
            )
            if not source_keys and not target_keys:
                continue

            fraction = ONE
            if rule.elimination_type == EliminationType.DIVIDEND and target_company in members:
                fraction = members[target_company].ownership_fraction

            s = sum((ledger.available(k) for k in source_keys), ZERO)
            t = sum((ledger.available(k, fraction) for k in target_keys), ZERO)

            if s == 0 and t == 0:
                if ledger.was_consumed(source_keys + target_keys):
                    issues.append(_already_eliminated(rule, source_company, target_company))
                continue

            imbalance = s + t
            if abs(imbalance) <= tolerance and s != 0 and t != 0:
                lines = self._reverse(ledger, source_keys, ONE, None)
                lines += self._reverse(ledger, target_keys, fraction, None)
                if imbalance != 0:
                    lines.append(_post(self._accounts.intercompany_difference, source_company, imbalance))
                entries.append(self._entry(rule, source_company, target_company, abs(s), lines, imbalance))
                continue

            matched = min(abs(s), abs(t)) if (s > 0) != (t > 0) and s != 0 and t != 0 else ZERO
            if matched > 0:
                lines = self._reverse(ledger, source_keys, ONE, matched)
                lines += self._reverse(ledger, target_keys, fraction, matched)
                entries.append(self._entry(rule, source_company, target_company, matched, lines, ZERO))

            severity_error = configured is not None and not skip_validation
            message = (
                f"Rule '{rule.name}': intercompany balance with {target_company} does not match "
                f"(source {s}, counterpart {t}, imbalance {imbalance}, tolerance {tolerance})"
            )
            issues.append(
                ValidationIssue.error(IssueCode.UNMATCHED_INTERCOMPANY, message, source_company)
                if severity_error
                else ValidationIssue.warning(IssueCode.UNMATCHED_INTERCOMPANY, message, source_company)
            )
            logger.warning(
                "intercompany_unmatched",
                extra={
                    "rule_id": str(rule.rule_id),
                    "source_company_id": str(source_company),
                    "target_company_id": str(target_company),
                    "imbalance": str(imbalance),
                    "tolerance": str(tolerance),
                },
            )

    # ------------------------------------------------------------------
    # Investment
    # ------------------------------------------------------------------

    def _evaluate_investment(
        self,
        rule: EliminationRule,
        ledger: _Ledger,
        companies: set[UUID],
        members: Mapping[UUID, ConsolidationMember],
        entries: list[EliminationEntry],
        issues: list[ValidationIssue],
    ) -> None:
        for investor, investee in self._pairs(rule, ledger, companies):
            member = members.get(investee)
            if member is None:
                continue
            fraction = member.ownership_fraction
            source_keys = self._side(ledger, investor, investee, rule.matches_source)
            equity_keys = [
                k for k in ledger.keys()
                if k[0] == investee
                and k[2] in (None, investor)
                and rule.matches_target(ledger.meta[k])
            ]
            investment = sum((ledger.available(k) for k in source_keys), ZERO)
            equity = sum((ledger.available(k, fraction) for k in equity_keys), ZERO)

            if investment == 0 and equity == 0:
                if ledger.was_consumed(source_keys + equity_keys):
                    issues.append(_already_eliminated(rule, investor, investee))
                continue

            lines = self._reverse(ledger, source_keys, ONE, None)
            lines += self._reverse(ledger, equity_keys, fraction, None)
            # investment is a debit and equity a credit; what is left over is goodwill
            residual = investment + equity
            if residual > 0:
                lines.append(_post(self._accounts.goodwill, investee, residual))
            elif residual < 0:
                lines.append(_post(self._accounts.intercompany_difference, investee, residual))

            if member.goodwill_amount is not None and residual != member.goodwill_amount:
                logger.info(
                    "investment_goodwill_differs",
                    extra={
                        "rule_id": str(rule.rule_id),
                        "company_id": str(investee),
                        "computed_goodwill": str(residual),
                        "recorded_goodwill": str(member.goodwill_amount),
                    },
                )
            entries.append(self._entry(rule, investor, investee, investment, lines, residual))

    # ------------------------------------------------------------------
    # Unrealized profit
    # ------------------------------------------------------------------

    def _evaluate_unrealized_profit(
        self,
        rule: EliminationRule,
        ledger: _Ledger,
        companies: set[UUID],
        catalog: Mapping[str, TrialBalanceLine],
        entries: list[EliminationEntry],
        issues: list[ValidationIssue],
    ) -> None:
        debit = catalog.get(rule.debit_account_id or "")
        credit = catalog.get(rule.credit_account_id or "")
        if debit is None or credit is None:
            missing = rule.debit_account_id if debit is None else rule.credit_account_id
            issues.append(ValidationIssue.error(
                IssueCode.UNKNOWN_ELIMINATION_ACCOUNT,
                f"Rule '{rule.name}' posts to account {missing}, which no member or "
                f"consolidation account defines",
            ))
            return

        margin = (
            rule.profit_margin_percentage
            if rule.treatment == EliminationTreatment.UNREALIZED_PROFIT
            else HUNDRED
        )
        for seller, buyer in self._pairs(rule, ledger, companies):
            keys = self._side(ledger, seller, buyer, rule.matches_source)
            if not keys:
                continue
            tracked = [(rule.elimination_type, k) for k in keys]
            base = sum(
                (abs(ledger.original[k]) - ledger.profit_consumed.get(t, ZERO) for t, k in zip(tracked, keys)),
                ZERO,
            )
            if base <= 0:
                if any(ledger.profit_consumed.get(t, ZERO) for t in tracked):
                    issues.append(_already_eliminated(rule, seller, buyer))
                continue
            for t, k in zip(tracked, keys):
                ledger.profit_consumed[t] = abs(ledger.original[k])

            amount = ledger.currency.quantize(base * margin / HUNDRED)
            if amount == 0:
                continue
            lines = [
                _line(debit, seller, amount),
                _line(credit, buyer, -amount),
            ]
            entries.append(self._entry(rule, seller, buyer, amount, lines, ZERO))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pairs(
        self,
        rule: EliminationRule,
        ledger: _Ledger,
        companies: set[UUID],
        include_counterpart: bool = False,
    ) -> list[tuple[UUID, UUID]]:
        """
        Ordered (source company, counterpart) pairs.

        A pair exists when A holds a source line tagged B. With
        include_counterpart, a target line on B tagged A also yields
        (A, B), so a balance recorded by one side only is still matched
        and reported.
        """
        pairs: set[tuple[UUID, UUID]] = set()
        for k in ledger.keys():
            company, partner = k[0], k[2]
            if partner is None or partner not in companies or partner == company:
                continue
            line = ledger.meta[k]
            if rule.matches_source(line):
                pairs.add((company, partner))
            elif include_counterpart and rule.matches_target(line):
                pairs.add((partner, company))
        return sorted(pairs, key=lambda p: (str(p[0]), str(p[1])))

    def _side(self, ledger: _Ledger, company: UUID, partner: UUID, predicate) -> list[BalanceKey]:
        return [
            k for k in ledger.keys()
            if k[0] == company and k[2] == partner and predicate(ledger.meta[k])
        ]

    def _reverse(
        self,
        ledger: _Ledger,
        keys: list[BalanceKey],
        fraction: Decimal,
        limit: Decimal | None,
    ) -> list[EliminationLine]:
        """
        Reverse available balances on keys, consuming them.

        limit caps the amount reversed. Under a limit only balances with
        the sign of the side's net are reversed, so the side moves by
        exactly limit toward zero; keys are consumed in account order.
        """
        lines: list[EliminationLine] = []
        left = limit
        net_positive = None
        if limit is not None:
            net_positive = sum((ledger.available(k, fraction) for k in keys), ZERO) > 0
        for key in keys:
            available = ledger.available(key, fraction)
            if available == 0:
                continue
            take = available
            if left is not None:
                if left <= 0:
                    break
                if (available > 0) != net_positive:
                    continue
                if abs(available) > left:
                    take = left if available > 0 else -left
                left -= abs(take)
            ledger.consume(key, take)
            lines.append(_line(ledger.meta[key], key[0], -take))
        return lines

    def _entry(
        self,
        rule: EliminationRule,
        from_company: UUID,
        to_company: UUID,
        amount: Decimal,
        lines: list[EliminationLine],
        difference: Decimal,
    ) -> EliminationEntry:
        return EliminationEntry(
            entry_id=entry_id_for(rule.rule_id, from_company, to_company),
            rule_id=rule.rule_id,
            rule_name=rule.name,
            elimination_type=rule.elimination_type,
            from_company_id=from_company,
            to_company_id=to_company,
            amount=amount,
            lines=tuple(lines),
            difference=difference,
        )

    def _account_catalog(
        self, member_balances: Mapping[UUID, Sequence[TrialBalanceLine]]
    ) -> dict[str, TrialBalanceLine]:
        catalog: dict[str, TrialBalanceLine] = {
            a.account_id: a.line(ZERO) for a in self._accounts.all()
        }
        for company_id in sorted(member_balances, key=str):
            for line in member_balances[company_id]:
                catalog.setdefault(line.account_id, line)
        return catalog


def _line(template, company_id: UUID, amount: Decimal) -> EliminationLine:
    return EliminationLine(
        company_id=company_id,
        account_id=template.account_id,
        account_name=template.account_name,
        account_type=template.account_type,
        amount=amount,
        category=template.category,
    )


def _post(account, company_id: UUID, amount: Decimal) -> EliminationLine:
    return _line(account.line(amount), company_id, amount)


def _already_eliminated(rule: EliminationRule, source: UUID, target: UUID) -> ValidationIssue:
    logger.warning(
        "intercompany_already_eliminated",
        extra={
            "rule_id": str(rule.rule_id),
            "source_company_id": str(source),
            "target_company_id": str(target),
        },
    )
    return ValidationIssue.warning(
        IssueCode.INTERCOMPANY_ALREADY_ELIMINATED,
        f"Rule '{rule.name}': balances between {source} and {target} were already eliminated",
        source,
    )
