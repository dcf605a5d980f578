"""Chat prompts for lot classification.

Single mode sends five worked examples followed by one lot. Batch mode sends
one worked example and N lots labelled by id, and asks for a JSON object
keyed by those ids.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from .categories import CATEGORY_HINTS, CATEGORY_TREE

SYSTEM_PROMPT = "Ты — эксперт по анализу имущества на торгах по банкротству."

RESULT_TEMPLATE = (
    '{ "categories": [], "suggestedCategory": null, "title": "...", '
    '"marketValueMin": null, "marketValueMax": null, "priceConfidence": "low", '
    '"investmentSummary": null, "isSharedOwnership": false, '
    '"propertyRegionCode": null, "propertyRegionName": null, "propertyFullAddress": null }'
)

# (lot description, expected answer)
FEW_SHOT_EXAMPLES: list[tuple[str, dict]] = [
    (
        "Лот №1. Земельный участок для ИЖС, площадь 1500 кв.м, кадастровый номер 50:00:000000:123, "
        "расположен по адресу: Московская обл, г. Химки. На участке расположен недостроенный дом.",
        {
            "categories": ["Земельный участок", "Прочие постройки"],
            "suggestedCategory": None,
            "title": "Земельный участок 15 сот. (ИЖС) с недостроем, Московская обл., г. Химки, КН 50:00:000000:123",
            "marketValueMin": 5500000,
            "marketValueMax": 8500000,
            "priceConfidence": "medium",
            "investmentSummary": (
                "Оценочная стоимость основана на типичной цене земли под ИЖС в Химках с дисконтом за "
                "недостроенный объект и неопределённость степени готовности. Потенциал роста возможен при "
                "юридическом оформлении и доведении недостроя до пригодного состояния, но потребуются вложения. "
                "Риски: фактическое состояние/готовность, коммуникации и возможные обременения."
            ),
            "isSharedOwnership": False,
            "propertyRegionCode": "50",
            "propertyRegionName": "Московская область",
            "propertyFullAddress": "Московская обл, г. Химки",
        },
    ),
    (
        "Автомобиль легковой Toyota Camry, 2018 г.в., VIN X123456789, цвет черный, не на ходу, "
        "требуется ремонт двигателя.",
        {
            "categories": ["Легковой автомобиль"],
            "suggestedCategory": None,
            "title": "Toyota Camry, 2018 г.в. (не на ходу, требуется ремонт двигателя)",
            "marketValueMin": 1200000,
            "marketValueMax": 1800000,
            "priceConfidence": "medium",
            "investmentSummary": (
                "Оценочная стоимость рассчитана как ориентир по рынку Camry 2018 г.в. минус дисконт на "
                "неходовое состояние и ремонт двигателя. Потенциал прибыли появляется при покупке ближе к "
                "нижней границе и подтверждённой смете ремонта с быстрым выходом в продажу. Риски: скрытые "
                "дефекты, объём ремонта и юридические ограничения."
            ),
            "isSharedOwnership": False,
            "propertyRegionCode": None,
            "propertyRegionName": None,
            "propertyFullAddress": None,
        },
    ),
    (
        "Право требования автомобиля LADA LARGUS, 2019 г.в., VIN XTAFS045LK1200566 (на основании судебного акта)",
        {
            "categories": ["Дебиторская задолженность"],
            "suggestedCategory": None,
            "title": "Право требования (LADA LARGUS, 2019 г.в., VIN XTAFS045LK1200566)",
            "marketValueMin": 100000,
            "marketValueMax": 400000,
            "priceConfidence": "low",
            "investmentSummary": (
                "Оценка ориентировочная: права требования обычно продаются с сильным дисконтом к стоимости "
                "базового имущества из-за рисков и сроков взыскания. Потенциал прибыли возможен при быстром и "
                "успешном исполнении судебного акта, но это зависит от платёжеспособности и фактической "
                "исполнимости. Риски: сроки/расходы на взыскание и неопределённость результата."
            ),
            "isSharedOwnership": False,
            "propertyRegionCode": None,
            "propertyRegionName": None,
            "propertyFullAddress": None,
        },
    ),
    (
        "1/2 доля в праве общей долевой собственности на квартиру, назначение жилое, площадь 45.5 кв.м, "
        "этаж 3. Адрес: г. Санкт-Петербург, ул. Садовая, д. 10, кв. 5.",
        {
            "categories": ["Квартира"],
            "suggestedCategory": None,
            "title": "1/2 доля в кв. 45.5 кв.м, г. Санкт-Петербург, ул. Садовая",
            "marketValueMin": 2800000,
            "marketValueMax": 3500000,
            "priceConfidence": "high",
            "investmentSummary": (
                "Оценка стоимости учитывает специфику продажи доли: существенный дисконт (до 40-50%) "
                "относительно рыночной стоимости половины целой квартиры из-за сложности пользования. "
                "Потенциал: выкуп второй доли у сособственника или продажа всей квартиры целиком (совместно). "
                "Риски: конфликт с сособственниками, невозможность проживания, низкая ликвидность доли как "
                "самостоятельного объекта."
            ),
            "isSharedOwnership": True,
            "propertyRegionCode": "78",
            "propertyRegionName": "Санкт-Петербург",
            "propertyFullAddress": "г. Санкт-Петербург, ул. Садовая, д. 10",
        },
    ),
    (
        "Нежилое здание (склад), площадь 450 кв.м., кадастровый номер 66:41:0000000:777. "
        "Местонахождение: Свердловская обл., р-н Сысертский, п. Большой Исток.",
        {
            "categories": ["Нежилое здание", "Складское оборудование"],
            "suggestedCategory": None,
            "title": "Нежилое здание (склад) 450 кв.м., Свердловская обл., п. Большой Исток",
            "marketValueMin": 7500000,
            "marketValueMax": 9500000,
            "priceConfidence": "medium",
            "investmentSummary": (
                "Оценка базируется на средней стоимости кв.м. складской недвижимости класса C в пригороде "
                "Екатеринбурга. Диапазон обусловлен неизвестным техническим состоянием. Инвестиционный "
                "потенциал: сдача в аренду или перепродажа после косметического ремонта. Риски: состояние "
                "кровли/пола, наличие/мощность коммуникаций (электричество, отопление) и удобство подъездных путей."
            ),
            "isSharedOwnership": False,
            "propertyRegionCode": "66",
            "propertyRegionName": "Свердловская область",
            "propertyFullAddress": "Свердловская обл., р-н Сысертский, п. Большой Исток",
        },
    ),
]

_LOCATION_RULES = (
    "6. Проанализируй описание на наличие информации о местонахождении имущества:\n"
    "   - Если в описании указан полный адрес (область, город, улица и т.д.), заполни propertyFullAddress, "
    "propertyRegionCode (код региона из справочника ФНС) и propertyRegionName (название региона).\n"
    "   - Если указан только регион/область/край/республика, заполни propertyRegionCode и propertyRegionName.\n"
    "   - Если адрес не указан, оставь эти поля null.\n"
    "   - Коды регионов: 01-21 (республики), 22-27, 41, 59, 75 (края), 28-76 (области), 77 (Москва), "
    "78 (Санкт-Петербург), 92 (Севастополь), 83, 86, 87, 89 (автономные округа), 79 (Еврейская АО), "
    "99 (иные территории).\n\n"
)

_CONFIDENCE_RULES = (
    "Если данных мало — делай широкий диапазон. Если оценить невозможно — верни null для обоих полей.\n"
    "Дополнительно заполни priceConfidence: \"high\" если достаточно конкретики "
    "(тип/площадь/адрес/состояние/комплектация), \"medium\" если часть данных отсутствует, "
    "\"low\" если описание слишком общее или есть критическая неопределенность.\n\n"
)

_SUMMARY_RULES = (
    "8. Сформируй investmentSummary: 2–3 предложения на русском. "
    "Кратко объясни, какие факторы больше всего повлияли на оценочную стоимость "
    "(локация/состояние/тип/площадь/правовой статус), упомяни 1–2 ключевых риска/ограничения и возможный "
    "сценарий прибыли (если реалистично). Если priceConfidence = low — явно скажи, что оценка ориентировочная. "
    "ВАЖНО: НЕ упоминай конкретные суммы, диапазоны цен или числовые значения стоимости в investmentSummary.\n\n"
)


def render_categories() -> str:
    lines: list[str] = []
    for group, names in CATEGORY_TREE.items():
        lines.append(f"- Группа '{group}':")
        for name in names:
            hint = CATEGORY_HINTS.get(name)
            lines.append(f"  * {name} (включает: {hint})" if hint else f"  * {name}")
    return "\n".join(lines) + "\n"


def describe_lot(
    description: str,
    *,
    start_price: Optional[Decimal] = None,
    cadastral_numbers: Iterable[str] = (),
) -> str:
    """Lot text for the prompt: description plus known facts."""
    parts = [description.strip()]
    if start_price is not None:
        parts.append(f"Начальная цена: {start_price} руб.")
    numbers = [n for n in cadastral_numbers if n]
    if numbers:
        parts.append("Кадастровые номера: " + ", ".join(numbers))
    return "\n".join(parts)


def _example(text: str, answer: dict) -> list[dict[str, str]]:
    return [
        {"role": "user", "content": f"Описание: {text}"},
        {"role": "assistant", "content": json.dumps(answer, ensure_ascii=False, indent=2)},
    ]


def build_single_messages(lot_text: str) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    for text, answer in FEW_SHOT_EXAMPLES:
        messages.extend(_example(text, answer))
    messages.append({
        "role": "user",
        "content": (
            "Проанализируй описание лота и заполни JSON.\n\n"
            f"ОПИСАНИЕ ЛОТА:\n{lot_text}\n\n"
            f"СПИСОК ДОПУСТИМЫХ КАТЕГОРИЙ:\n{render_categories()}\n\n"
            "ИНСТРУКЦИИ:\n"
            "1. Выбери категории СТРОГО из списка выше, учитывая пояснения в скобках.\n"
            "2. Если лот подходит под несколько категорий, верни их списком.\n"
            "3. Если ни одна категория не подходит, выбери 'Прочее' и заполни поле 'suggestedCategory' "
            "своим вариантом.\n"
            "4. Сформируй название (title). Если это доля, укажи это в названии.\n"
            "5. isSharedOwnership = true только для долевой собственности (1/2 и т.д.). "
            "Для совместно нажитой собственности isSharedOwnership = false\n"
            + _LOCATION_RULES
            + "7. Определи рыночную стоимость объекта как диапазон: marketValueMin и marketValueMax "
            "(в рублях, числа). Если цена/оценка явно указана в описании — используй её как ориентир и "
            "построй диапазон вокруг неё. "
            + _CONFIDENCE_RULES
            + _SUMMARY_RULES
            + f"ФОРМАТ ОТВЕТА (JSON):\n{RESULT_TEMPLATE}"
        ),
    })
    return messages


def build_batch_messages(lots: Mapping[str, str]) -> list[dict[str, str]]:
    """Messages for several lots; ``lots`` maps lot id to prompt text."""
    ids = list(lots)
    listing = "".join(f"ЛОТ {i + 1} (ID: {lot_id}):\n{lots[lot_id]}\n\n" for i, lot_id in enumerate(ids))
    template = ",\n".join(f'  "{lot_id}": {RESULT_TEMPLATE}' for lot_id in ids)
    text, answer = FEW_SHOT_EXAMPLES[0]
    messages = [{"role": "system", "content": SYSTEM_PROMPT}, *_example(text, answer)]
    messages.append({
        "role": "user",
        "content": (
            f"Проанализируй описания {len(ids)} лотов и заполни JSON для каждого.\n\n"
            f"ОПИСАНИЯ ЛОТОВ:\n{listing}"
            f"СПИСОК ДОПУСТИМЫХ КАТЕГОРИЙ:\n{render_categories()}\n\n"
            "ИНСТРУКЦИИ:\n"
            "1. Для каждого лота выбери категории СТРОГО из списка выше, учитывая пояснения в скобках.\n"
            "2. Если лот подходит под несколько категорий, верни их списком.\n"
            "3. Если ни одна категория не подходит, выбери 'Прочее' и заполни поле 'suggestedCategory' "
            "своим вариантом.\n"
            "4. Сформируй название (title) для каждого лота. Если это доля, укажи это в названии.\n"
            "5. isSharedOwnership = true только для долевой собственности (1/2 и т.д.). "
            "Для совместно нажитой собственности isSharedOwnership = false\n"
            + _LOCATION_RULES
            + "7. Определи рыночную стоимость объекта как диапазон: marketValueMin и marketValueMax "
            "(в рублях, числа). Твой главный ориентир - это начальная цена лота, построй диапазон вокруг неё. "
            "Кадастровая стоимость дана справочно. "
            + _CONFIDENCE_RULES
            + _SUMMARY_RULES
            + "ФОРМАТ ОТВЕТА (JSON объект, где ключи - это ID лотов в формате строки):\n"
            f"{{\n{template}\n}}\n\n"
            f"ВАЖНО: Верни JSON объект с {len(ids)} элементами, где каждый ключ - это ID лота "
            f"(строка, например: \"{ids[0]}\"), а значение - результат классификации для этого лота."
        ),
    })
    return messages


__all__ = [
    "SYSTEM_PROMPT",
    "FEW_SHOT_EXAMPLES",
    "render_categories",
    "describe_lot",
    "build_single_messages",
    "build_batch_messages",
]
