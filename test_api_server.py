# test_api_server.py
import json
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from fastapi.testclient import TestClient

import api_server
from diary_core import HOUR_UNRESOLVED_NOTE
from diary_llm import DiaryLLMClient, UpstreamParseError
from saju_calendar import LunarCalendarAdapter

JST = ZoneInfo("Asia/Tokyo")

class FakeLLM:
    def __init__(self, message=None, error=None):
        self.message = message or {
            "deepMessage": "深いメッセージ",
            "innerMessage": "内なるメッセージ",
            "actionAdvice": "行動アドバイス",
        }
        self.error = error
        self.prompts = []

    def ensure_configured(self):
        pass

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return dict(self.message)

    def generate_placeholders(self, time_of_day):
        return {"mood": f"例: {time_of_day}", "event": "例: e", "intuition": "例: i"}

def _request(**profile):
    user = {"birthDate": "1990-05-15"}
    user.update(profile)
    return {
        "userProfile": user,
        "biorhythm": {"p": 0, "e": 0, "i": 0},
        "entry": {"emoji": "😊", "mood": "穏やか", "type": "past", "event": "散歩した", "intuition": ""},
    }

@pytest.fixture
def client():
    return TestClient(api_server.app, raise_server_exceptions=False)

@pytest.fixture
def fixed_now(monkeypatch):
    now = datetime(1990, 6, 7, 12, 0, tzinfo=JST)
    monkeypatch.setattr(api_server, "now_local", lambda: now)
    return now

@pytest.fixture
def fake_llm(monkeypatch):
    llm = FakeLLM()
    monkeypatch.setattr(api_server, "get_llm_client", lambda: llm)
    return llm

def test_health(client):
    assert client.get("/health").json() == {"ok": True}

def test_analyze_without_birth_time(client, fixed_now, fake_llm):
    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    data = body["data"]
    assert data["deepMessage"] == "深いメッセージ"
    assert data["biorhythm"]["p"] == 0
    assert data["saju"]["birth"]["hour"] is None
    assert data["saju"]["today"]["hour"]
    assert "12:00" in data["saju"]["note"]
    assert "hour" not in data["todayHints"]
    for v in data["themeScores"].values():
        assert 0 <= v <= 100
    assert set(data["saju"]["taiun"]) == {"age", "pillar", "description"}
    assert data["saju"]["taiun"]["age"] == 0
    assert data["timeOfDay"] == "昼"
    assert len(fake_llm.prompts) == 1

def test_analyze_with_birth_time(client, fixed_now, fake_llm):
    res = client.post("/api/analyze", json=_request(birthTime="21:00"))
    data = res.json()["data"]
    assert len(data["saju"]["birth"]["hour"]) == 2
    assert data["saju"]["birth"]["hour"][1] == "亥"
    assert data["todayHints"]["hour"]["value"] == "21:00-23:00"
    assert "12:00" not in data["saju"]["note"]

def test_malformed_birth_time_falls_back(client, fixed_now, fake_llm):
    data = client.post("/api/analyze", json=_request(birthTime="9pm")).json()["data"]
    assert data["saju"]["birth"]["hour"] is None
    assert "12:00" in data["saju"]["note"]

def test_missing_birth_date_rejected_before_any_work(client, monkeypatch, fake_llm):
    def no_calendar():
        raise AssertionError("calendar must not be used")
    monkeypatch.setattr(api_server, "get_calendar", no_calendar)

    req = _request()
    del req["userProfile"]["birthDate"]
    res = client.post("/api/analyze", json=req)
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "validation_error"
    assert body["field"] == "userProfile.birthDate"
    assert fake_llm.prompts == []

@pytest.mark.parametrize("missing", ["biorhythm", "entry"])
def test_missing_required_sections(client, fake_llm, missing):
    req = _request()
    del req[missing]
    res = client.post("/api/analyze", json=req)
    assert res.status_code == 400
    assert res.json()["field"] == missing
    assert fake_llm.prompts == []

def test_bad_birth_date_format(client, fake_llm):
    req = _request()
    req["userProfile"]["birthDate"] = "15/05/1990"
    res = client.post("/api/analyze", json=req)
    assert res.status_code == 400
    assert res.json()["field"] == "userProfile.birthDate"

def test_biorhythm_out_of_range_is_validation_error(client, fake_llm):
    req = _request()
    req["biorhythm"]["p"] = 150
    res = client.post("/api/analyze", json=req)
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "validation_error"
    assert body["field"] == "biorhythm.p"

def test_upstream_non_2xx(client, fixed_now, monkeypatch):
    def handler(request):
        return httpx.Response(529, text='{"error": "overloaded"}')
    llm = DiaryLLMClient("sk-test", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    monkeypatch.setattr(api_server, "get_llm_client", lambda: llm)

    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 502
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "upstream_error"
    assert body["status"] == 529
    assert "overloaded" in body["detail"]
    assert "data" not in body
    assert "themeScores" not in json.dumps(body)

def test_upstream_parse_error(client, fixed_now, monkeypatch):
    llm = FakeLLM(error=UpstreamParseError("not json"))
    monkeypatch.setattr(api_server, "get_llm_client", lambda: llm)
    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 502
    assert res.json()["error"] == "parse_error"
    assert res.json()["raw"] == "not json"

def test_missing_api_key_is_configuration_error(client, fixed_now, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 500
    assert res.json()["error"] == "configuration_error"

def test_unexpected_fault_is_reported(client, fixed_now, fake_llm, monkeypatch):
    def broken():
        raise RuntimeError("calendar offline")
    monkeypatch.setattr(api_server, "get_calendar", broken)
    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 500
    assert res.json()["error"] == "internal_error"

def test_deterministic_fields_repeat_with_fixed_now(client, fixed_now, monkeypatch):
    replies = iter([
        {"deepMessage": "一回目", "innerMessage": "a", "actionAdvice": "b"},
        {"deepMessage": "二回目", "innerMessage": "c", "actionAdvice": "d"},
    ])
    monkeypatch.setattr(api_server, "get_llm_client", lambda: FakeLLM(message=next(replies)))

    first = client.post("/api/analyze", json=_request(birthTime="08:15")).json()["data"]
    second = client.post("/api/analyze", json=_request(birthTime="08:15")).json()["data"]
    assert first["deepMessage"] != second["deepMessage"]
    assert first["themeScores"] == second["themeScores"]
    assert first["saju"]["birth"] == second["saju"]["birth"]
    assert first["saju"]["today"] == second["saju"]["today"]
    assert first["saju"]["taiun"]["pillar"] == second["saju"]["taiun"]["pillar"]
    assert first["biorhythm"] == second["biorhythm"]
    for key, field in (("color", "tier"), ("number", "value"), ("direction", "value"), ("distance", "band")):
        assert first["todayHints"][key][field] == second["todayHints"][key][field]

def test_biorhythm_endpoint(client, fixed_now):
    res = client.get("/api/biorhythm", params={"birthDate": "1990-05-15"})
    data = res.json()["data"]
    assert data["p"] == 0
    assert data["date"] == "1990-06-07"
    assert data["timeOfDay"] == "昼"

def test_biorhythm_endpoint_requires_birth_date(client):
    res = client.get("/api/biorhythm")
    assert res.status_code == 400
    assert res.json()["field"] == "birthDate"

def test_placeholders_endpoint(client, fake_llm):
    res = client.post("/api/placeholders", json={"timeOfDay": "朝"})
    assert res.json() == {"success": True, "placeholders": {"mood": "例: 朝", "event": "例: e", "intuition": "例: i"}}

def test_missing_api_key_stops_before_calendar(client, fixed_now, monkeypatch):
    calls = []

    def spy_calendar():
        calls.append(1)
        raise RuntimeError("calendar offline")
    monkeypatch.setattr(api_server, "get_calendar", spy_calendar)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    res = client.post("/api/analyze", json=_request())
    assert res.status_code == 500
    assert res.json()["error"] == "configuration_error"
    assert calls == []

def test_birth_time_given_but_hour_pillar_unavailable(client, fixed_now, fake_llm, monkeypatch):
    class NoHourAdapter(LunarCalendarAdapter):
        def resolve_hour_pillar(self, instant):
            return None
    monkeypatch.setattr(api_server, "get_calendar", lambda: NoHourAdapter("Asia/Tokyo"))

    data = client.post("/api/analyze", json=_request(birthTime="21:00")).json()["data"]
    assert data["saju"]["birth"]["hour"] is None
    assert data["saju"]["note"] == HOUR_UNRESOLVED_NOTE
    assert "hour" not in data["todayHints"]

def test_biorhythm_endpoint_bad_date_names_query_field(client):
    res = client.get("/api/biorhythm", params={"birthDate": "1990/05/15"})
    assert res.status_code == 400
    assert res.json()["field"] == "birthDate"
    assert "birthDate must be YYYY-MM-DD" in res.json()["message"]

def test_index_fallback_lists_endpoints(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "/api/analyze" in res.text
