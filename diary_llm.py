# diary_llm.py
# 프롬프트 조립 + 언어모델 호출(OpenAI v1) + 응답 JSON 파싱
# 계산된 피처는 구조체(DiaryFeatures)로 받고, 문구는 여기서만 만든다.

import json
import logging
import re

import openai
from openai import OpenAI

from diary_core import DiaryFeatures, WUXING_LABEL_JA, get_element

logger = logging.getLogger("diary_llm")

MESSAGE_FIELDS = ("deepMessage", "innerMessage", "actionAdvice")
PLACEHOLDER_FIELDS = ("mood", "event", "intuition")

DEFAULT_PLACEHOLDERS = {
    "mood": "例: 穏やかで少し眠い",
    "event": "例: 朝のコーヒーが美味しくて気分が上がった",
    "intuition": "例: 今日は大切な人との繋がりを感じる日",
}

# =========================
# 에러 분류
# =========================
class DiaryError(Exception):
    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}

class InputValidationError(DiaryError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"{field} is required")
        self.field = field

    def to_body(self) -> dict:
        body = super().to_body()
        body["field"] = self.field
        return body

class ConfigurationError(DiaryError):
    kind = "configuration_error"
    status_code = 500

class UpstreamError(DiaryError):
    kind = "upstream_error"
    status_code = 502

    def __init__(self, status: int | None, detail: str):
        label = f"API error: {status}" if status is not None else "API connection error"
        super().__init__(label)
        self.status = status
        self.detail = detail

    def to_body(self) -> dict:
        body = super().to_body()
        body["status"] = self.status
        body["detail"] = self.detail
        return body

class UpstreamParseError(DiaryError):
    kind = "parse_error"
    status_code = 502

    def __init__(self, raw: str, reason: str = "Failed to parse JSON"):
        super().__init__(reason)
        self.raw = raw

    def to_body(self) -> dict:
        body = super().to_body()
        body["raw"] = self.raw
        return body

# =========================
# 프롬프트
# =========================
SYSTEM_PROMPT = (
    "あなたは「占い師」ではなく「スピリチュアル×心理のコーチ」です。"
    "与えられた数値（四柱推命・バイオリズム・テーマスコア）は計算済みなので再計算しないこと。"
    "断定ではなく提案の形で、やさしく具体的に伝えてください。"
)

TIME_INTRO = {"朝": "朝の始まり", "昼": "日中の活動時間", "夜": "夜のリラックスタイム"}

def _or_unknown(v) -> str:
    return v if v else "不明"

def _element_label(pillar) -> str:
    e = get_element(pillar)
    return WUXING_LABEL_JA.get(e, "不明") if e else "不明"

def build_diary_prompt(features: DiaryFeatures, profile: dict, entry: dict) -> str:
    b, t = features.birth, features.today
    bio, ts, hints = features.biorhythm, features.theme_scores, features.today_hints
    is_past = entry.get("type", "past") != "future"
    nickname = (profile.get("nickname") or "").strip()
    gender = (profile.get("gender") or "").strip()

    hour_hint = hints.get("hour")
    hour_line = f"\n時間帯: {hour_hint['value']}" if hour_hint else ""

    prompt = f"""
【四柱推命（生年月日から算出）】
年柱: {_or_unknown(b.year)}
月柱: {_or_unknown(b.month)}
日柱: {_or_unknown(b.day)}（{_element_label(b.day)}）
時柱: {_or_unknown(b.hour)}   ※{features.note}
生肖: {_or_unknown(b.zodiac)}
ニックネーム（任意）: {nickname or "未入力"}
性別（任意）: {gender or "未入力"}

【今日の干支】
年柱: {_or_unknown(t.year)} / 月柱: {_or_unknown(t.month)} / 日柱: {_or_unknown(t.day)}（{_element_label(t.day)}） / 時柱: {_or_unknown(t.hour)}

【大運（10年の流れ）】
{features.decade.age}歳〜: {features.decade.pillar}（{features.decade.description}）

【バイオリズム】
身体: {bio.p}%
感情: {bio.e}%
知性: {bio.i}%
全体: {features.energy}エネルギー

【今日のテーマスコア（0〜100）】
恋愛: {ts.love} / 金運: {ts.money} / 仕事: {ts.work} / 健康: {ts.health}

【今日のヒント】
色: {hints["color"]["value"]}
数字: {hints["number"]["value"]}
方角: {hints["direction"]["label"]}
人との距離: {hints["distance"]["value"]}{hour_line}

【現在の時間帯】
{TIME_INTRO[features.time_of_day]}（{features.time_of_day}）

【ユーザーのアウトプット】
気分: {entry.get("emoji", "")} {entry.get("mood") or ""}
{"今日あったこと" if is_past else "今日の予定"}: {entry.get("event", "")}
直感: {entry.get("intuition") or "なし"}

【指示】
1. 時間帯（朝・昼・夜）に応じた“ひとこと導入”
2. バイオリズム×四柱推命×テーマスコア×アウトプットから見える「今日の心理傾向」
   - 強み（活かし方）
   - 反応パターン（注意点）
3. {"出来事から学べること" if is_past else "予定に向けての心構え"}
4. 実行可能なアクションを3つ（具体的、今日のヒントを1つ以上織り込む）

【出力】
必ず JSONのみ。前後の説明文、装飾、``` は禁止。
{{
  "deepMessage": "300文字程度の深いメッセージ",
  "innerMessage": "150文字程度の直感についての洞察",
  "actionAdvice": "具体的なアクション3つ（文章でも箇条書きでもOK）"
}}
"""
    return prompt.strip()

def build_placeholder_prompt(time_of_day: str) -> str:
    context = TIME_INTRO.get(time_of_day, TIME_INTRO["夜"])
    prompt = f"""
あなたはスピリチュアル日記アプリのプレースホルダーテキスト生成AIです。
ユーザーが日記を書く際の「例文」として、自然で親しみやすい文章を生成してください。

【時間帯】
{context}（{time_of_day}）

【指示】
以下の3つのフィールドの例文を生成してください。毎回違う内容にすること。
1. mood: 気分を表す短い一言（10-15文字程度、具体的な感情表現）
2. event: 今日あった出来事の例文（30-45文字程度、リアルで共感できる日常）
3. intuition: 直感的な一言の例文（15-25文字程度、スピリチュアルで前向き）

【出力】
必ず JSONのみ。前後の説明文、装飾、``` は禁止。
{{
  "mood": "例文",
  "event": "例文",
  "intuition": "例文"
}}
"""
    return prompt.strip()

# =========================
# 응답 파싱
# =========================
_FENCE_RE = re.compile(r"```(?:json)?\n?|```")

def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()

def parse_json_fields(text: str, fields: tuple[str, ...]) -> dict:
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError):
        raise UpstreamParseError(cleaned)
    if not isinstance(data, dict):
        raise UpstreamParseError(cleaned, "Response JSON is not an object")
    missing = [f for f in fields if not isinstance(data.get(f), str)]
    if missing:
        raise UpstreamParseError(cleaned, f"Missing string fields: {', '.join(missing)}")
    return {f: data[f] for f in fields}

def parse_diary_message(text: str) -> dict:
    return parse_json_fields(text, MESSAGE_FIELDS)

def with_example_prefix(placeholders: dict) -> dict:
    out = {}
    for k, v in placeholders.items():
        out[k] = v if v.startswith("例:") else f"例: {v}"
    return out

# =========================
# 모델 클라이언트
# =========================
class DiaryLLMClient:
    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        *,
        timeout: float = 30.0,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        http_client=None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.http_client = http_client

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")

    def _client(self) -> OpenAI:
        self.ensure_configured()
        # 자동 재시도 없음
        return OpenAI(
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
            http_client=self.http_client,
        )

    def complete(self, prompt: str, *, system: str | None = None, max_tokens: int | None = None) -> str:
        client = self._client()
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        try:
            resp = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=max_tokens or self.max_tokens,
            )
        except openai.APIStatusError as e:
            detail = e.response.text if e.response is not None else str(e)
            logger.warning("model call failed: status=%s", e.status_code)
            raise UpstreamError(e.status_code, detail)
        except openai.APIConnectionError as e:
            logger.warning("model call failed: %s", e)
            raise UpstreamError(None, str(e))
        return resp.choices[0].message.content or ""

    def generate(self, prompt: str) -> dict:
        text = self.complete(prompt, system=SYSTEM_PROMPT)
        return parse_diary_message(text)

    def generate_placeholders(self, time_of_day: str) -> dict:
        """어떤 실패든 기본 예문으로 대체 (입력 화면을 막지 않음)."""
        if not self.api_key:
            return dict(DEFAULT_PLACEHOLDERS)
        try:
            text = self.complete(build_placeholder_prompt(time_of_day), max_tokens=500)
            return with_example_prefix(parse_json_fields(text, PLACEHOLDER_FIELDS))
        except DiaryError as e:
            logger.info("placeholder generation fell back to defaults: %s", e.kind)
            return dict(DEFAULT_PLACEHOLDERS)
