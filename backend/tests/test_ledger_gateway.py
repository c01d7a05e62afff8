"""Find-or-create gateway, installment splitting, search filters and payments."""

import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_ledger.core.errors import ConflictError, InvalidMovementError, NotFoundError
from invoice_ledger.models.ledger import AuditLog, Base, Classification, Installment, Movement, Party
from invoice_ledger.schemas.ledger import UpsertStatus
from invoice_ledger.services.ledger_gateway import (
    ClassificationGateway,
    MovementGateway,
    PartyGateway,
    add_months,
    cents_to_amount,
    infer_party_kind,
    normalize_tax_id,
    split_installments,
)


class HelperTests(unittest.TestCase):
    def test_normalize_tax_id(self):
        self.assertEqual(normalize_tax_id("18.944.113/0002-91"), "18944113000291")
        self.assertEqual(normalize_tax_id("709.046.011-88"), "70904601188")
        self.assertEqual(normalize_tax_id(None), "")

    def test_party_kind_from_length(self):
        self.assertEqual(infer_party_kind("18944113000291").value, "ORGANIZATION")
        self.assertEqual(infer_party_kind("70904601188").value, "INDIVIDUAL")

    def test_cents_to_amount(self):
        self.assertEqual(cents_to_amount(344900), Decimal("3449.00"))
        self.assertEqual(cents_to_amount("1999"), Decimal("19.99"))
        with self.assertRaises(InvalidMovementError):
            cents_to_amount("abc")
        with self.assertRaises(InvalidMovementError):
            cents_to_amount(None)

    def test_add_months_clamps_day(self):
        self.assertEqual(add_months(date(2026, 1, 31), 1), date(2026, 2, 28))
        self.assertEqual(add_months(date(2026, 11, 15), 2), date(2027, 1, 15))

    def test_split_puts_remainder_on_last_installment(self):
        rows = split_installments(Decimal("100.00"), 3, date(2026, 10, 1))
        self.assertEqual([label for label, _, _ in rows], ["1/3", "2/3", "3/3"])
        self.assertEqual([amount for _, _, amount in rows], [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])
        self.assertEqual(sum(amount for _, _, amount in rows), Decimal("100.00"))
        self.assertEqual(rows[2][1], date(2026, 12, 1))


class _GatewayTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _seed_movement(self, *, supplier_tax_id="18944113000291", supplier_name="AGRO SUL LTDA",
                       category="INSUMOS AGRÍCOLAS", total_cents=344900, installments=1,
                       issue_date=date(2026, 9, 10), invoice_number="000207590"):
        parties = PartyGateway(self.db)
        supplier = parties.find_or_create(supplier_tax_id, supplier_name)
        billed_to = parties.find_or_create("70904601188", "JOAO DA SILVA")
        expense = ClassificationGateway(self.db).find_or_create(category)
        return MovementGateway(self.db).create_with_installments(
            supplier_id=supplier.id,
            billed_to_id=billed_to.id,
            classification_ids=[expense.id],
            total_cents=total_cents,
            issue_date=issue_date,
            invoice_number=invoice_number,
            description="Fertilizante NPK 20-05-20",
            installment_count=installments,
            due_date=date(2026, 10, 10),
        )


class PartyGatewayTests(_GatewayTestCase):
    def test_create_then_exists_on_formatted_tax_id(self):
        gateway = PartyGateway(self.db)

        created = gateway.find_or_create("18944113000291", "Agro Sul Ltda", trade_name="Agro Sul")
        again = gateway.find_or_create("18.944.113/0002-91", "AGRO SUL LTDA (outro nome)")

        self.assertEqual(created.status, UpsertStatus.CREATED)
        self.assertEqual(created.message, "NOT FOUND (CREATED NOW)")
        self.assertEqual(again.status, UpsertStatus.EXISTS)
        self.assertEqual(again.id, created.id)
        self.assertEqual(self.db.execute(select(func.count(Party.id))).scalar_one(), 1)

        party = gateway.get(created.id)
        self.assertEqual(party.tax_id, "18944113000291")
        self.assertEqual(party.kind, "ORGANIZATION")
        self.assertEqual(party.trade_name, "Agro Sul")
        self.assertEqual(party.status, "ACTIVE")

    def test_missing_data_returns_error_without_writing(self):
        gateway = PartyGateway(self.db)

        self.assertEqual(gateway.find_or_create("", "Fulano").status, UpsertStatus.ERROR_DATA)
        self.assertEqual(gateway.find_or_create("70904601188", "  ").status, UpsertStatus.ERROR_DATA)
        self.assertIsNone(gateway.find_or_create(None, None).id)
        self.assertEqual(self.db.execute(select(func.count(Party.id))).scalar_one(), 0)

    def test_creation_is_audited(self):
        created = PartyGateway(self.db, actor_type="CONSOLE").find_or_create("70904601188", "Joao")
        log = self.db.execute(select(AuditLog).where(AuditLog.action == "PARTY_CREATED")).scalar_one()
        self.assertEqual(log.entity_id, str(created.id))
        self.assertEqual(log.actor_type, "CONSOLE")
        self.assertEqual(log.new_value["tax_id"], "[REDACTED]")

    def test_lost_race_reports_exists(self):
        gateway = PartyGateway(self.db)
        winner = gateway.find_or_create("70904601188", "Joao").record

        with patch.object(gateway, "find_by_tax_id", side_effect=[None, winner]):
            result = gateway.find_or_create("709.046.011-88", "Joao")

        self.assertEqual(result.status, UpsertStatus.EXISTS)
        self.assertEqual(result.id, winner.id)
        self.assertEqual(self.db.execute(select(func.count(Party.id))).scalar_one(), 1)

    def test_get_unknown_raises(self):
        with self.assertRaises(NotFoundError):
            PartyGateway(self.db).get(999)

    def test_update_normalises_tax_id(self):
        gateway = PartyGateway(self.db)
        created = gateway.find_or_create("70904601188", "Joao")

        updated = gateway.update(created.id, {"legal_name": "Joao Silva", "tax_id": "18.944.113/0002-91", "status": "X"})

        self.assertEqual(updated.legal_name, "Joao Silva")
        self.assertEqual(updated.tax_id, "18944113000291")
        self.assertEqual(updated.kind, "ORGANIZATION")
        self.assertEqual(updated.status, "ACTIVE")

    def test_update_onto_taken_tax_id_conflicts(self):
        gateway = PartyGateway(self.db)
        first = gateway.find_or_create("11222333000181", "Posto Boa Viagem")
        second = gateway.find_or_create("99888777000166", "Transportes Rio")

        with self.assertRaises(ConflictError):
            gateway.update(second.id, {"tax_id": "11.222.333/0001-81"})

        self.assertEqual(gateway.get(second.id).tax_id, "99888777000166")
        self.assertEqual(gateway.get(first.id).tax_id, "11222333000181")
        updates = self.db.execute(select(func.count(AuditLog.id)).where(AuditLog.action == "PARTY_UPDATED"))
        self.assertEqual(updates.scalar_one(), 0)

    def test_list_filters(self):
        gateway = PartyGateway(self.db)
        gateway.find_or_create("18944113000291", "Agro Sul Ltda")
        gateway.find_or_create("70904601188", "Joao da Silva")

        self.assertEqual([p.legal_name for p in gateway.list(term="agro")], ["Agro Sul Ltda"])
        self.assertEqual([p.legal_name for p in gateway.list(kind="individual")], ["Joao da Silva"])
        self.assertEqual([p.legal_name for p in gateway.list(term="709.046")], ["Joao da Silva"])
        self.assertEqual(len(gateway.list()), 2)

    def test_soft_delete_refused_while_referenced(self):
        movement = self._seed_movement()
        gateway = PartyGateway(self.db)

        result = gateway.soft_delete(movement.supplier_id)

        self.assertFalse(result.ok)
        self.assertEqual(result.status, "ERROR")
        self.assertEqual(result.references, 1)
        self.assertEqual(gateway.get(movement.supplier_id).status, "ACTIVE")

    def test_soft_delete_unreferenced(self):
        gateway = PartyGateway(self.db)
        created = gateway.find_or_create("70904601188", "Joao")

        result = gateway.soft_delete(created.id)

        self.assertTrue(result.ok)
        self.assertEqual(gateway.get(created.id).status, "INACTIVE")
        self.assertEqual(gateway.list(), [])
        self.assertEqual(len(gateway.list(include_inactive=True)), 1)


class ClassificationGatewayTests(_GatewayTestCase):
    def test_lookup_is_case_insensitive(self):
        gateway = ClassificationGateway(self.db)

        created = gateway.find_or_create("Manutenção e Operação")
        again = gateway.find_or_create("  manutenção e operação ")

        self.assertEqual(created.status, UpsertStatus.CREATED)
        self.assertEqual(again.status, UpsertStatus.EXISTS)
        self.assertEqual(again.id, created.id)

    def test_same_description_different_kind(self):
        gateway = ClassificationGateway(self.db)
        expense = gateway.find_or_create("Frete", "EXPENSE")
        revenue = gateway.find_or_create("Frete", "revenue")

        self.assertEqual(revenue.status, UpsertStatus.CREATED)
        self.assertNotEqual(expense.id, revenue.id)

    def test_empty_description(self):
        result = ClassificationGateway(self.db).find_or_create("   ")
        self.assertEqual(result.status, UpsertStatus.ERROR_DATA)
        self.assertEqual(self.db.execute(select(func.count(Classification.id))).scalar_one(), 0)

    def test_rename_onto_existing_description_conflicts(self):
        gateway = ClassificationGateway(self.db)
        gateway.find_or_create("Frete")
        other = gateway.find_or_create("Seguro")

        with self.assertRaises(ConflictError):
            gateway.update(other.id, {"description": "FRETE"})

        self.assertEqual(gateway.get(other.id).description, "Seguro")

    def test_soft_delete_refused_while_linked(self):
        movement = self._seed_movement()
        classification_id = movement.classifications[0].id

        result = ClassificationGateway(self.db).soft_delete(classification_id)

        self.assertEqual(result.status, "ERROR")
        self.assertEqual(ClassificationGateway(self.db).get(classification_id).status, "ACTIVE")


class MovementGatewayTests(_GatewayTestCase):
    def test_create_with_two_installments(self):
        movement = self._seed_movement(total_cents=344900, installments=2)

        stored = MovementGateway(self.db).get(movement.id)
        self.assertEqual(Decimal(str(stored.total_amount)), Decimal("3449.00"))
        self.assertEqual(stored.status, "PENDING")
        self.assertEqual(stored.movement_type, "PAYABLE")
        self.assertEqual([i.label for i in stored.installments], ["1/2", "2/2"])
        self.assertEqual([Decimal(str(i.amount)) for i in stored.installments], [Decimal("1724.50")] * 2)
        self.assertEqual([i.due_date for i in stored.installments], [date(2026, 10, 10), date(2026, 11, 10)])
        self.assertEqual([c.description for c in stored.classifications], ["INSUMOS AGRÍCOLAS"])
        self.assertEqual(stored.supplier.legal_name, "AGRO SUL LTDA")

    def test_rejects_missing_ids_and_non_positive_totals(self):
        gateway = MovementGateway(self.db)
        with self.assertRaises(InvalidMovementError):
            gateway.create_with_installments(
                supplier_id=None,
                billed_to_id=1,
                classification_ids=[1],
                total_cents=100,
                issue_date=date(2026, 1, 1),
            )

        movement = self._seed_movement()
        with self.assertRaises(InvalidMovementError):
            gateway.create_with_installments(
                supplier_id=movement.supplier_id,
                billed_to_id=movement.billed_to_id,
                classification_ids=[movement.classifications[0].id],
                total_cents=0,
                issue_date=date(2026, 1, 1),
            )
        self.assertEqual(self.db.execute(select(func.count(Movement.id))).scalar_one(), 1)

    def test_search_filters(self):
        self._seed_movement()
        self._seed_movement(
            supplier_tax_id="11222333000181",
            supplier_name="POSTO BOA VIAGEM",
            category="MANUTENÇÃO E OPERAÇÃO",
            total_cents=52000,
            issue_date=date(2026, 8, 2),
            invoice_number="5511",
        )
        gateway = MovementGateway(self.db)

        self.assertEqual(len(gateway.search({})), 2)
        self.assertEqual([m.invoice_number for m in gateway.search({"counterparty_name": "posto"})], ["5511"])
        self.assertEqual(
            [m.invoice_number for m in gateway.search({"tax_id": "18.944.113/0002-91"})],
            ["000207590"],
        )
        self.assertEqual([m.invoice_number for m in gateway.search({"value_min": 1000})], ["000207590"])
        self.assertEqual([m.invoice_number for m in gateway.search({"value_max": 520})], ["5511"])
        self.assertEqual(
            [m.invoice_number for m in gateway.search({"date_from": date(2026, 9, 1), "date_to": date(2026, 9, 30)})],
            ["000207590"],
        )
        self.assertEqual([m.invoice_number for m in gateway.search({"category": "manuten"})], ["5511"])
        self.assertEqual([m.invoice_number for m in gateway.search({"invoice_number": "2075"})], ["000207590"])

    def test_search_orders_newest_first(self):
        self._seed_movement(invoice_number="A", issue_date=date(2026, 1, 5))
        self._seed_movement(invoice_number="B", issue_date=date(2026, 3, 5))

        self.assertEqual([m.invoice_number for m in MovementGateway(self.db).search({})], ["B", "A"])

    def test_soft_delete_hides_movement_from_default_list(self):
        movement = self._seed_movement()
        gateway = MovementGateway(self.db)

        self.assertTrue(gateway.soft_delete(movement.id).ok)

        self.assertEqual(gateway.get(movement.id).status, "INACTIVE")
        self.assertEqual(gateway.list(), [])
        self.assertEqual(len(gateway.list(include_inactive=True)), 1)

    def test_payments_settle_installments_and_movement(self):
        movement = self._seed_movement(total_cents=344900, installments=2)
        first, second = movement.installments
        gateway = MovementGateway(self.db)

        partial = gateway.register_payment(first.id, Decimal("1000.00"))
        self.assertEqual(partial.installment.status, "PENDING")
        self.assertEqual(Decimal(str(partial.installment.balance)), Decimal("724.50"))
        self.assertEqual(partial.movement_status, "PENDING")

        settled = gateway.register_payment(first.id, "724.50")
        self.assertEqual(settled.installment.status, "PAID")
        self.assertEqual(settled.movement_status, "PENDING")

        last = gateway.register_payment(second.id, 1724.5)
        self.assertEqual(last.movement_status, "PAID")
        self.assertEqual(gateway.get(movement.id).status, "PAID")

    def test_payment_validation(self):
        movement = self._seed_movement()
        gateway = MovementGateway(self.db)

        with self.assertRaises(NotFoundError):
            gateway.register_payment(999, 10)
        with self.assertRaises(InvalidMovementError):
            gateway.register_payment(movement.installments[0].id, 0)
        self.assertEqual(self.db.get(Installment, movement.installments[0].id).status, "PENDING")
