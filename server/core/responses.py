"""Reply text and chip builders shared by the engine's handlers."""
from typing import List, Optional, Sequence

from models.cards import RestaurantCard, TruncationMeta
from models.message import MessageKind

_CHIPS = {
    MessageKind.RESTAURANT_PROFILE: ["Ask about this restaurant"],
    MessageKind.ERROR: ["Try again"],
}

_DIET_HEADERS = {
    "sv": "Här är några **{diet}**-alternativ jag hittade{city}. Titta i restaurangkorten nedan — använd **Load more** i kortet för fler rätter.",
    "pa": "ਇੱਥੇ ਕੁਝ **{diet}** ਵਿਕਲਪ ਹਨ ਜੋ ਮੈਨੂੰ ਮਿਲੇ{city}। ਹੇਠਾਂ ਰੈਸਟੋਰੈਂਟ ਕਾਰਡ ਦੇਖੋ — ਹੋਰ ਪਕਵਾਨਾਂ ਲਈ **Load more** ਵਰਤੋ।",
    "hi": "यहाँ कुछ **{diet}** विकल्प हैं जो मुझे मिले{city}। नीचे रेस्तराँ कार्ड देखें — अधिक व्यंजनों के लिए **Load more** का उपयोग करें।",
    "en": "Here are some **{diet}** options I found{city}. Browse the restaurant cards below — use **Load more** inside a card to see more dishes.",
}

_QUERY_HEADERS = {
    "sv": "Här är de bästa träffarna för \"{query}\"{city}.",
    "pa": "ਇੱਥੇ \"{query}\" ਲਈ ਸਭ ਤੋਂ ਵਧੀਆ ਨਤੀਜੇ ਹਨ{city}।",
    "hi": "यहाँ \"{query}\" के लिए सबसे अच्छे परिणाम हैं{city}।",
    "en": "Here are the best matches for \"{query}\"{city}.",
}

_PLACES_LABELS = {"sv": "Restauranger", "pa": "ਰੈਸਟੋਰੈਂਟ", "hi": "रेस्तराँ", "en": "Places"}


def chips_for(kind: MessageKind) -> List[str]:
    """Follow-up chips are a pure function of the message kind."""
    return list(_CHIPS.get(kind, []))


def diet_label(dietary: Sequence[str]) -> Optional[str]:
    terms = [d for d in dietary if d]
    return " + ".join(terms) if terms else None


def build_human_summary(
    cards: Sequence[RestaurantCard],
    meta: TruncationMeta,
    query: str,
    city: Optional[str] = None,
    dietary: Sequence[str] = (),
    lang: str = "en",
) -> str:
    lang = (lang or "en").lower()
    city_part = f" in {city}" if city else ""
    label = diet_label(dietary)

    if label:
        header = _DIET_HEADERS.get(lang, _DIET_HEADERS["en"]).format(diet=label, city=city_part)
    else:
        header = _QUERY_HEADERS.get(lang, _QUERY_HEADERS["en"]).format(query=query, city=city_part)

    lines = [header]
    names = [c.name for c in cards[:4] if c.name]
    if names:
        lines.append(f"**{_PLACES_LABELS.get(lang, 'Places')}:** {' • '.join(names)}")
    if meta.truncated and meta.restaurants_returned and meta.total_restaurants:
        if lang == "sv":
            lines.append(f"_(Visar {meta.restaurants_returned} av {meta.total_restaurants} restauranger)_")
        else:
            lines.append(f"_(Showing {meta.restaurants_returned} of {meta.total_restaurants} restaurants)_")
    return "\n".join(lines)
