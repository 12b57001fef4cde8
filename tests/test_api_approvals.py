"""
Approval API tests.

Tests cover:
  - Submit a solution to workflows (201 list, draft → review)
  - Approve / reject via PUT, notes rule, 409 on repeat decisions
  - Rejection cascade across parallel workflows
  - Listing filters and single-record lookup
  - End-to-end flow: submit → partial approval → final approval
"""
import pytest

APPROVER = {"X-User": "carol@acme.test"}


@pytest.fixture()
def solution(client):
    res = client.post(
        "/api/v1/solutions",
        json={"name": "SAP S/4 Upgrade", "customer": "Hooli", "estimatedValue": 640000, "projectType": "upgrade"},
        headers={"X-User": "alice@acme.test"},
    )
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def workflows(client):
    created = []
    for name, approvers in (("Finance", ["cfo@acme.test"]), ("Delivery", ["pmo@acme.test"])):
        res = client.post("/api/v1/workflows", json={
            "name": name,
            "steps": [{"name": f"{name} Review", "assignedApprovers": approvers}],
        })
        assert res.status_code == 201
        created.append(res.get_json())
    return created


def _submit(client, solution, workflows):
    res = client.post(
        "/api/v1/approvals",
        json={"solutionId": solution["id"], "workflowIds": [w["id"] for w in workflows]},
        headers={"X-User": "alice@acme.test"},
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _stage(client, solution):
    return client.get(f"/api/v1/solutions/{solution['id']}").get_json()["stage"]


# ═════════════════════════════════════════════════════════════════════════════
# SUBMIT
# ═════════════════════════════════════════════════════════════════════════════

class TestSubmit:
    def test_submit_creates_pending_records(self, client, solution, workflows):
        created = _submit(client, solution, workflows)
        assert len(created) == 2
        assert {a["workflowName"] for a in created} == {"Finance", "Delivery"}
        assert all(a["priority"] == "high" for a in created)
        assert all(a["requester"] == "alice@acme.test" for a in created)
        assert _stage(client, solution) == "review"

    def test_submit_requires_solution_id(self, client, workflows):
        res = client.post("/api/v1/approvals", json={"workflowIds": [workflows[0]["id"]]})
        assert res.status_code == 400

    def test_submit_requires_workflows(self, client, solution):
        res = client.post("/api/v1/approvals", json={"solutionId": solution["id"], "workflowIds": []})
        assert res.status_code == 400

    def test_submit_unknown_workflow(self, client, solution):
        res = client.post("/api/v1/approvals", json={"solutionId": solution["id"], "workflowIds": [9999]})
        assert res.status_code == 404

    def test_submit_unknown_solution(self, client, workflows):
        res = client.post("/api/v1/approvals", json={"solutionId": 9999, "workflowIds": [workflows[0]["id"]]})
        assert res.status_code == 404

    def test_resubmit_pending_conflicts(self, client, solution, workflows):
        _submit(client, solution, workflows[:1])
        res = client.post(
            "/api/v1/approvals",
            json={"solutionId": solution["id"], "workflowIds": [workflows[0]["id"]]},
        )
        assert res.status_code == 409


# ═════════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestDecide:
    def test_reject_cascades(self, client, solution, workflows):
        first, second = _submit(client, solution, workflows)

        res = client.put(
            f"/api/v1/approvals/{first['id']}",
            json={"decision": "rejected", "notes": "Budget not approved"},
            headers=APPROVER,
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["processedBy"] == "carol@acme.test"
        assert body["solutionStage"] == "draft"

        sibling = client.get(f"/api/v1/approvals/{second['id']}").get_json()
        assert sibling["status"] == "rejected"
        assert sibling["notes"] == "Cancelled due to rejection in parallel workflow"
        assert sibling["processedBy"] == "system"
        assert _stage(client, solution) == "draft"

    def test_reject_without_notes(self, client, solution, workflows):
        [approval] = _submit(client, solution, workflows[:1])
        res = client.put(f"/api/v1/approvals/{approval['id']}", json={"status": "rejected"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"notes": "required"}
        assert client.get(f"/api/v1/approvals/{approval['id']}").get_json()["status"] == "pending"

    def test_approve_without_notes(self, client, solution, workflows):
        [approval] = _submit(client, solution, workflows[:1])
        res = client.put(f"/api/v1/approvals/{approval['id']}", json={"status": "approved"}, headers=APPROVER)
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        assert _stage(client, solution) == "approved"

    def test_invalid_decision(self, client, solution, workflows):
        [approval] = _submit(client, solution, workflows[:1])
        res = client.put(f"/api/v1/approvals/{approval['id']}", json={"status": "pending"})
        assert res.status_code == 400

    def test_repeat_decision_conflicts(self, client, solution, workflows):
        [approval] = _submit(client, solution, workflows[:1])
        client.put(f"/api/v1/approvals/{approval['id']}", json={"status": "approved"})
        res = client.put(f"/api/v1/approvals/{approval['id']}", json={"status": "approved"})
        assert res.status_code == 409

    def test_unknown_approval(self, client):
        assert client.put("/api/v1/approvals/9999", json={"status": "approved"}).status_code == 404
        assert client.get("/api/v1/approvals/9999").status_code == 404

    def test_missing_body(self, client, solution, workflows):
        [approval] = _submit(client, solution, workflows[:1])
        assert client.put(f"/api/v1/approvals/{approval['id']}").status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# LIST & FLOW
# ═════════════════════════════════════════════════════════════════════════════

class TestListApprovals:
    def test_filters(self, client, solution, workflows):
        first, second = _submit(client, solution, workflows)
        client.put(f"/api/v1/approvals/{first['id']}", json={"status": "approved"})

        def ids(query):
            res = client.get(f"/api/v1/approvals{query}")
            assert res.status_code == 200
            return sorted(a["id"] for a in res.get_json())

        assert ids("") == sorted([first["id"], second["id"]])
        assert ids(f"?solution_id={solution['id']}") == sorted([first["id"], second["id"]])
        assert ids("?status=pending") == [second["id"]]
        assert ids(f"?workflow_id={workflows[0]['id']}") == [first["id"]]
        assert ids("?assigned_to=pmo@acme.test") == [second["id"]]
        assert ids("?priority=low") == []

    def test_invalid_status_filter(self, client):
        assert client.get("/api/v1/approvals?status=stuck").status_code == 400


class TestEndToEnd:
    def test_full_approval_flow(self, client, solution, workflows):
        first, second = _submit(client, solution, workflows)
        assert _stage(client, solution) == "review"

        client.put(f"/api/v1/approvals/{first['id']}", json={"status": "approved"}, headers=APPROVER)
        assert _stage(client, solution) == "review"

        res = client.put(
            f"/api/v1/approvals/{second['id']}",
            json={"status": "approved", "notes": "Delivery plan OK"},
            headers=APPROVER,
        )
        assert res.get_json()["solutionStage"] == "approved"
        assert _stage(client, solution) == "approved"

        history = client.get(f"/api/v1/solutions/{solution['id']}/approval-history").get_json()
        assert [h["action"] for h in history] == ["submitted", "submitted", "approved", "approved"]
