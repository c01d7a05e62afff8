"""CRUD console endpoints under /api for parties, classifications, payables and installments."""

import os
import unittest
from datetime import date
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_ledger.core.dependencies import get_db
from invoice_ledger.main import app
from invoice_ledger.models.ledger import AuditLog, Base
from invoice_ledger.services.ledger_gateway import ClassificationGateway, MovementGateway, PartyGateway

MOCK_AI_ENV = {"AI_PROVIDER": "mock", "AI_ALLOWED_PROVIDERS": "mock", "AI_EMBEDDING_DIMENSIONS": "8"}


class ManagementApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _seed_movement(self, installments=2):
        db = self.SessionLocal()
        try:
            parties = PartyGateway(db)
            supplier = parties.find_or_create("18944113000291", "AGRO SUL LTDA")
            billed_to = parties.find_or_create("70904601188", "JOAO DA SILVA")
            expense = ClassificationGateway(db).find_or_create("INSUMOS AGRICOLAS")
            movement = MovementGateway(db).create_with_installments(
                supplier_id=supplier.id,
                billed_to_id=billed_to.id,
                classification_ids=[expense.id],
                total_cents=344900,
                issue_date=date(2026, 9, 10),
                invoice_number="000207590",
                installment_count=installments,
                due_date=date(2026, 10, 10),
            )
            return {
                "movement_id": movement.id,
                "supplier_id": supplier.id,
                "classification_id": expense.id,
                "installment_ids": [i.id for i in movement.installments],
            }
        finally:
            db.close()

    # -- parties --------------------------------------------------------------

    def test_party_create_get_update(self):
        resp = self.client.post("/api/pessoas", json={"documento": "18.944.113/0002-91", "razaosocial": "Agro Sul"})
        self.assertEqual(resp.status_code, 200)
        created = resp.json()
        self.assertEqual(created["status"], "CREATED")
        self.assertEqual(created["data"]["tax_id"], "18944113000291")

        again = self.client.post("/api/pessoas", json={"documento": "18944113000291", "razaosocial": "Outro"})
        self.assertEqual(again.json()["status"], "EXISTS")
        self.assertEqual(again.json()["id"], created["id"])

        resp = self.client.put(f"/api/pessoas/{created['id']}", json={"trade_name": "AGRO SUL"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["trade_name"], "AGRO SUL")
        self.assertEqual(resp.json()["legal_name"], "Agro Sul")

        resp = self.client.get(f"/api/pessoas/{created['id']}")
        self.assertEqual(resp.json()["kind"], "ORGANIZATION")

    def test_party_update_onto_taken_tax_id_is_409(self):
        self.client.post("/api/pessoas", json={"documento": "11222333000181", "razaosocial": "Posto Boa Viagem"})
        second = self.client.post("/api/pessoas", json={"documento": "99888777000166", "razaosocial": "Transportes Rio"})

        resp = self.client.put(f"/api/pessoas/{second.json()['id']}", json={"tax_id": "11.222.333/0001-81"})

        self.assertEqual(resp.status_code, 409)
        self.assertIn("conflicts", resp.json()["detail"])
        self.assertEqual(self.client.get(f"/api/pessoas/{second.json()['id']}").json()["tax_id"], "99888777000166")

    def test_console_writes_record_client_in_audit_log(self):
        self.client.post(
            "/api/pessoas",
            json={"documento": "70904601188", "razaosocial": "Joao"},
            headers={"User-Agent": "gestao-console/1.0"},
        )

        db = self.SessionLocal()
        try:
            log = db.execute(select(AuditLog).where(AuditLog.action == "PARTY_CREATED")).scalar_one()
        finally:
            db.close()
        self.assertEqual(log.actor_type, "CONSOLE")
        self.assertEqual(log.user_agent, "gestao-console/1.0")
        self.assertEqual(log.ip_address, "testclient")

    def test_party_listing(self):
        self.client.post("/api/pessoas", json={"documento": "18944113000291", "razaosocial": "Agro Sul"})
        self.client.post("/api/pessoas", json={"documento": "70904601188", "razaosocial": "Joao"})

        names = [p["legal_name"] for p in self.client.get("/api/pessoas", params={"termo": "agro"}).json()]
        self.assertEqual(names, ["Agro Sul"])
        kinds = [p["kind"] for p in self.client.get("/api/pessoas", params={"tipo": "INDIVIDUAL"}).json()]
        self.assertEqual(kinds, ["INDIVIDUAL"])

    def test_unknown_party_is_404(self):
        resp = self.client.get("/api/pessoas/999")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"detail": "party 999 not found"})

    def test_referenced_party_delete_is_409(self):
        seeded = self._seed_movement()

        resp = self.client.delete(f"/api/pessoas/{seeded['supplier_id']}")

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["status"], "ERROR")
        self.assertEqual(self.client.get(f"/api/pessoas/{seeded['supplier_id']}").json()["status"], "ACTIVE")

    def test_unreferenced_party_delete(self):
        created = self.client.post("/api/pessoas", json={"documento": "70904601188", "razaosocial": "Joao"}).json()

        resp = self.client.delete(f"/api/pessoas/{created['id']}")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "SUCCESS")
        self.assertEqual(self.client.get("/api/pessoas").json(), [])
        self.assertEqual(len(self.client.get("/api/pessoas", params={"todos": "true"}).json()), 1)

    # -- classifications ------------------------------------------------------

    def test_classification_crud(self):
        created = self.client.post("/api/classificacoes", json={"descricao": "Frete"}).json()
        self.assertEqual(created["status"], "CREATED")
        self.assertEqual(created["data"]["kind"], "EXPENSE")

        again = self.client.post("/api/classificacoes", json={"descricao": "FRETE"}).json()
        self.assertEqual(again["status"], "EXISTS")

        resp = self.client.put(f"/api/classificacoes/{created['id']}", json={"description": "Frete e carreto"})
        self.assertEqual(resp.json()["description"], "Frete e carreto")

        self.assertEqual(self.client.delete(f"/api/classificacoes/{created['id']}").json()["status"], "SUCCESS")
        self.assertEqual(self.client.get("/api/classificacoes").json(), [])

    def test_classification_rename_onto_existing_is_409(self):
        self.client.post("/api/classificacoes", json={"descricao": "Frete"})
        other = self.client.post("/api/classificacoes", json={"descricao": "Seguro"}).json()

        resp = self.client.put(f"/api/classificacoes/{other['id']}", json={"description": "frete"})

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.client.get(f"/api/classificacoes/{other['id']}").json()["description"], "Seguro")

    def test_linked_classification_delete_is_409(self):
        seeded = self._seed_movement()
        resp = self.client.delete(f"/api/classificacoes/{seeded['classification_id']}")
        self.assertEqual(resp.status_code, 409)

    def test_invalid_classification_payload_is_422(self):
        resp = self.client.post("/api/classificacoes", json={"descricao": "Frete", "tipo": "OTHER"})
        self.assertEqual(resp.status_code, 422)

    # -- movements ------------------------------------------------------------

    def test_movement_read_and_listing(self):
        seeded = self._seed_movement()

        resp = self.client.get(f"/api/contas/{seeded['movement_id']}")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["total_amount"], 3449.0)
        self.assertEqual(body["supplier"]["legal_name"], "AGRO SUL LTDA")
        self.assertEqual([c["description"] for c in body["classifications"]], ["INSUMOS AGRICOLAS"])
        self.assertEqual([i["label"] for i in body["installments"]], ["1/2", "2/2"])

        self.assertEqual(len(self.client.get("/api/contas").json()), 1)
        self.assertEqual(len(self.client.get("/api/contas", params={"termo": "agro"}).json()), 1)
        self.assertEqual(self.client.get("/api/contas", params={"termo": "nada"}).json(), [])
        self.assertEqual(self.client.get("/api/contas/999").status_code, 404)

    @patch.dict(os.environ, MOCK_AI_ENV, clear=False)
    def test_movement_update_reindexes(self):
        seeded = self._seed_movement()

        resp = self.client.put(
            f"/api/contas/{seeded['movement_id']}",
            json={"description": "Fertilizante NPK", "issue_date": "2026-09-11"},
        )

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["description"], "Fertilizante NPK")
        self.assertEqual(resp.json()["issue_date"], "2026-09-11")

    @patch.dict(os.environ, {"AI_PROVIDER": "gemini", "GEMINI_API_KEY": "", "GOOGLE_API_KEY": ""}, clear=False)
    def test_movement_update_survives_index_failure(self):
        seeded = self._seed_movement()

        resp = self.client.put(f"/api/contas/{seeded['movement_id']}", json={"invoice_number": "207590"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["invoice_number"], "207590")

    def test_movement_soft_delete(self):
        seeded = self._seed_movement()

        self.assertEqual(self.client.delete(f"/api/contas/{seeded['movement_id']}").json()["status"], "SUCCESS")

        self.assertEqual(self.client.get("/api/contas").json(), [])
        listed = self.client.get("/api/contas", params={"todos": "true"}).json()
        self.assertEqual(listed[0]["status"], "INACTIVE")

    @patch.dict(os.environ, MOCK_AI_ENV, clear=False)
    def test_risk_falls_back_to_neutral(self):
        seeded = self._seed_movement()

        resp = self.client.get(f"/api/contas/{seeded['movement_id']}/risco")

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["risk_score"], 5)
        self.assertTrue(body["fallback"])
        self.assertEqual(body["red_flags"][0]["type"], "ANALYSIS_ERROR")

    # -- installments ---------------------------------------------------------

    def test_installment_payments(self):
        seeded = self._seed_movement()
        first, second = seeded["installment_ids"]

        resp = self.client.post(f"/api/parcelas/{first}/pagamento", json={"valor_pago": 1724.5})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["installment"]["status"], "PAID")
        self.assertEqual(resp.json()["installment"]["balance"], 0.0)
        self.assertEqual(resp.json()["movement_status"], "PENDING")

        resp = self.client.post(f"/api/parcelas/{second}/pagamento", json={"amount": 1724.5})
        self.assertEqual(resp.json()["movement_status"], "PAID")

    def test_payment_validation(self):
        self.assertEqual(self.client.post("/api/parcelas/999/pagamento", json={"valor_pago": 10}).status_code, 404)
        seeded = self._seed_movement()
        resp = self.client.post(f"/api/parcelas/{seeded['installment_ids'][0]}/pagamento", json={"valor_pago": -5})
        self.assertEqual(resp.status_code, 422)

    # -- vector index ---------------------------------------------------------

    @patch.dict(os.environ, MOCK_AI_ENV, clear=False)
    def test_reindex(self):
        self._seed_movement()

        resp = self.client.post("/api/indice/reindexar")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"total": 1, "indexed": 1, "failed": []})

    @patch.dict(os.environ, {"AI_PROVIDER": "gemini", "GEMINI_API_KEY": "", "GOOGLE_API_KEY": ""}, clear=False)
    def test_reindex_without_key_is_503(self):
        resp = self.client.post("/api/indice/reindexar")
        self.assertEqual(resp.status_code, 503)


class ServiceEndpointsTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    @patch.dict(os.environ, {"GEMINI_API_KEY": "k"}, clear=False)
    def test_service_check_reports_key(self):
        body = self.client.get("/test").json()
        self.assertEqual(body["status"], "ok")
        self.assertTrue(body["gemini_key_configured"])
