from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from dalcoffee.config import settings


logger = logging.getLogger(__name__)

BLEND_SYSTEM_PROMPT = 'You are an expert coffee blender specializing in specialty coffee. Respond in Arabic.'
SOMMELIER_SYSTEM_PROMPT = 'You are a specialty coffee sommelier advising cafés. Respond in Arabic.'

EMPTY_ANSWER = 'لم نتمكن من توليد اقتراحات في الوقت الحالي.'

FALLBACK_BLEND_SUGGESTIONS = """بناءً على ملف النكهة المستهدف:

• للحصول على حموضة عالية، جرب إضافة قهوة كينيا أو إثيوبيا
• للجسم الكامل، أضف قهوة سومطرة أو البرازيل
• للحلاوة، جرب قهوة كولومبيا أو غواتيمالا

نسب مقترحة:
- 40% إثيوبيا (للحموضة والفاكهية)
- 35% كولومبيا (للتوازن والحلاوة)
- 25% البرازيل (للجسم والمكسرات)

نصيحة: جرب تحميص متوسط للحفاظ على توازن النكهات."""

FALLBACK_SOMMELIER_RECOMMENDATIONS = """توصيات عامة إلى أن تتوفر التوصيات المخصصة:

• إثيوبيا يرغاتشيفي: حموضة مشرقة ونكهات زهرية، مناسبة للتقطير
• كولومبيا هويلا: توازن وحلاوة كراميل، مناسبة للإسبريسو والحليب
• البرازيل سيرادو: جسم كامل ونكهات مكسرات، قاعدة ممتازة للخلطات"""


class AIServiceError(RuntimeError):
    pass


@dataclass(frozen=True)
class FlavorProfile:
    acidity: int = 50
    body: int = 50
    sweetness: int = 50
    bitterness: int = 50
    fruitiness: int = 50
    nuttiness: int = 50


@dataclass(frozen=True)
class AIAnswer:
    text: str
    fallback: bool


def _chat_completion(system_prompt: str, user_prompt: str) -> str:
    if not settings.ai_api_key:
        raise AIServiceError('AI_API_KEY not configured')

    payload = {
        'model': settings.ai_model,
        'messages': [
            {'role': 'system', 'content': system_prompt},
            {'role': 'user', 'content': user_prompt},
        ],
        'max_tokens': 1000,
        'temperature': 0.7,
    }
    req = Request(
        url=settings.ai_gateway_url,
        data=json.dumps(payload).encode('utf-8'),
        headers={
            'Authorization': f'Bearer {settings.ai_api_key}',
            'Content-Type': 'application/json',
        },
        method='POST',
    )
    try:
        with urlopen(req, timeout=settings.ai_timeout_seconds) as response:
            data = json.loads(response.read().decode('utf-8'))
    except HTTPError as exc:
        body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
        raise AIServiceError(f'AI API error {exc.code}: {body}') from exc
    except URLError as exc:
        raise AIServiceError(f'AI API network error: {exc.reason}') from exc
    except OSError as exc:
        raise AIServiceError(f'AI API network error: {exc}') from exc
    except ValueError as exc:
        raise AIServiceError('AI API returned invalid JSON') from exc

    choices = data.get('choices') or []
    content = ((choices[0] if choices else {}).get('message') or {}).get('content')
    return content or EMPTY_ANSWER


def _describe_coffees(coffees: list[dict]) -> str:
    lines = [
        f"- {c.get('name')} ({c.get('origin') or 'Unknown origin'}): "
        f"{c.get('flavor') or 'No flavor notes'}, Score: {c.get('score') or 'N/A'}"
        for c in coffees
    ]
    return '\n'.join(lines) or 'لا توجد أنواع متاحة'


def build_blend_prompt(components: list[dict], target: FlavorProfile, available_coffees: list[dict]) -> str:
    blend_lines = [
        f"- {c.get('coffeeName')} ({c.get('origin')}): {c.get('percentage')}%"
        for c in components
        if c.get('coffeeName')
    ]
    blend_context = '\n'.join(blend_lines) or 'No components selected yet'
    return f"""أنت خبير في خلط القهوة المتخصصة. ساعد المستخدم في إنشاء خلطة قهوة مثالية.

ملف النكهة المستهدف:
- الحموضة: {target.acidity}%
- الجسم: {target.body}%
- الحلاوة: {target.sweetness}%
- المرارة: {target.bitterness}%
- الفاكهية: {target.fruitiness}%
- المكسرات: {target.nuttiness}%

المكونات الحالية:
{blend_context}

القهوة المتاحة:
{_describe_coffees(available_coffees)}

قدم اقتراحات باللغة العربية تشمل:
1. تحليل ملف النكهة المستهدف
2. اقتراحات لأنواع القهوة المناسبة من القائمة المتاحة
3. نسب مقترحة للحصول على التوازن المطلوب
4. نصائح للتحميص والتحضير

اجعل الإجابة مختصرة ومفيدة (حوالي 200 كلمة)."""


def build_sommelier_prompt(preferences: dict, available_coffees: list[dict]) -> str:
    origins = ', '.join(preferences.get('preferred_origins') or []) or 'غير محدد'
    notes = ', '.join(preferences.get('flavor_notes') or []) or 'غير محدد'
    return f"""اقترح ثلاثة أنواع من القهوة الخضراء لمقهى بناءً على تفضيلاته.

المناشئ المفضلة: {origins}
النكهات المفضلة: {notes}
درجة التحميص: {preferences.get('roast_level_preference') or 'medium'}
الحموضة: {preferences.get('acidity_preference', 5)}/10
الجسم: {preferences.get('body_preference', 5)}/10
الحلاوة: {preferences.get('sweetness_preference', 5)}/10

القهوة المتاحة:
{_describe_coffees(available_coffees)}

لكل اقتراح اذكر سبب التطابق ونسبة تطابق تقديرية."""


def suggest_blend(components: list[dict], target: FlavorProfile, available_coffees: list[dict]) -> AIAnswer:
    try:
        text = _chat_completion(BLEND_SYSTEM_PROMPT, build_blend_prompt(components, target, available_coffees))
    except AIServiceError as exc:
        logger.warning('Blend suggestions unavailable, using fallback: %s', exc)
        return AIAnswer(text=FALLBACK_BLEND_SUGGESTIONS, fallback=True)
    return AIAnswer(text=text, fallback=False)


def recommend_coffees(preferences: dict, available_coffees: list[dict]) -> AIAnswer:
    try:
        text = _chat_completion(SOMMELIER_SYSTEM_PROMPT, build_sommelier_prompt(preferences, available_coffees))
    except AIServiceError as exc:
        logger.warning('Sommelier recommendations unavailable, using fallback: %s', exc)
        return AIAnswer(text=FALLBACK_SOMMELIER_RECOMMENDATIONS, fallback=True)
    return AIAnswer(text=text, fallback=False)
