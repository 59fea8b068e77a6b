"""Static reply strings for en, sv, hi and pa with English fallback."""

SUPPORTED_LANGUAGES = ("en", "sv", "hi", "pa")

_STRINGS: dict[str, dict[str, str]] = {
    "en": {
        "NO_CONTEXT_FOLLOWUP": "I don't have any previous results to refer to. Could you tell me what you're looking for?",
        "FACT_NO_MATCH": "I'm unsure which dish you mean. Could you specify?",
        "BACK_TO_SEARCHING": "Back to searching all restaurants. What would you like to find?",
        "ALLERGEN_TAGGED_PREFIX": "Contains allergens (tagged): {list}. ⚠️ Tags are guidance; cross-contamination may occur.",
        "ALLERGEN_NOT_TAGGED": "No allergens are tagged for {dish}. ⚠️ Tags are guidance; cross-contamination may occur.",
        "TAGS_GUIDANCE_DISCLAIMER": "⚠️ Tags are guidance; cross-contamination may occur.",
        "FOUND_RESULTS": "I found these matches:",
        "FOUND_TAGGED": "I found dishes tagged '{tag}':",
        "NO_RESULTS": "I couldn't find any matches for your search.",
        "NO_TAGGED_FALLBACK": "I couldn't find dishes explicitly tagged **{tag}** yet. Here are some restaurants to explore:",
        "NO_MATCH_TRY_AGAIN": "I couldn't find any '{query}' that is {tag}. Try a different search?",
        "YES_PREFIX": "✅ Yes —",
        "NO_PREFIX": "❌ No —",
        "ERROR_TRY_AGAIN": "Sorry, something went wrong on my side. Please try again.",
        "ALREADY_SHOWN_ALL": "I've already shown all dishes from {restaurant}.",
        "BROWSING_RESTAURANT": "Browsing **{restaurant}**. What would you like to know?",
        "RESHOW_AGAIN": "Here are the top options again. Want me to narrow it to a specific dish?",
        "NO_EXPLICIT_TAGS": "I didn't find explicit tags yet (or coverage is limited). Want to search by dish name (butter chicken/pizza) or pick a city?",
        "CLARIFY_PROMPT": "What type of cuisine or dish are you in the mood for? I can help you find restaurants based on specific dishes, dietary preferences, or cuisine types.",
        "WHICH_DISH": "Which dish do you mean? (e.g., Margherita or Funghi)",
        "DEFINITION_FALLBACK": "I don't have details on that.",
        "MENU_HEADER": "Here's {restaurant}'s full menu.",
        "MENU_WHICH_RESTAURANT": "Which restaurant's menu would you like to see?",
        "RESTAURANT_NOT_FOUND": "I couldn't find a restaurant named \"{name}\".",
        "MORE_FROM_RESTAURANT": "Here are more dishes from {restaurant}.",
        "NO_MORE_RESULTS": "That's everything I found for this search.",
        "MENU_CANDIDATES": "Try one of these: {names}.",
        "DID_YOU_MEAN": "Did you mean: {names}?",
    },
    "sv": {
        "NO_CONTEXT_FOLLOWUP": "Jag har inga tidigare resultat att utgå från. Vad letar du efter?",
        "FACT_NO_MATCH": "Jag är osäker på vilken rätt du menar. Kan du precisera?",
        "BACK_TO_SEARCHING": "Tillbaka till sökning bland alla restauranger. Vad vill du hitta?",
        "ALLERGEN_TAGGED_PREFIX": "Innehåller allergener (taggade): {list}. ⚠️ Taggar är vägledning; korskontaminering kan förekomma.",
        "ALLERGEN_NOT_TAGGED": "Inga allergener är taggade för {dish}. ⚠️ Taggar är vägledning; korskontaminering kan förekomma.",
        "TAGS_GUIDANCE_DISCLAIMER": "⚠️ Taggar är vägledning; korskontaminering kan förekomma.",
        "FOUND_RESULTS": "Jag hittade dessa resultat:",
        "FOUND_TAGGED": "Jag hittade rätter taggade '{tag}':",
        "NO_RESULTS": "Jag kunde inte hitta några träffar för din sökning.",
        "NO_TAGGED_FALLBACK": "Jag hittade inga rätter som är uttryckligen taggade **{tag}** ännu. Här är några restauranger att utforska:",
        "NO_MATCH_TRY_AGAIN": "Jag kunde inte hitta några '{query}' som är {tag}. Prova en annan sökning?",
        "YES_PREFIX": "✅ Ja —",
        "NO_PREFIX": "❌ Nej —",
        "ERROR_TRY_AGAIN": "Förlåt, något gick fel hos mig. Försök igen.",
        "ALREADY_SHOWN_ALL": "Jag har redan visat alla rätter från {restaurant}.",
        "BROWSING_RESTAURANT": "Du tittar på **{restaurant}**. Vad vill du veta?",
        "RESHOW_AGAIN": "Här är de bästa alternativen igen. Vill du att jag smalnar av till en specifik rätt?",
        "NO_EXPLICIT_TAGS": "Jag hittade inga explicita taggar ännu (eller täckningen är begränsad). Vill du söka efter rättnamn (butter chicken/pizza) eller välja en stad?",
        "WHICH_DISH": "Jag är osäker på vilken rätt du menar. Kan du precisera? (t.ex. Margherita eller Funghi)",
        "MENU_HEADER": "Här är hela menyn för {restaurant}.",
        "MENU_CANDIDATES": "Prova någon av dessa: {names}.",
        "DID_YOU_MEAN": "Menade du: {names}?",
    },
    "hi": {
        "NO_CONTEXT_FOLLOWUP": "मेरे पास पिछले परिणाम नहीं हैं। आप क्या खोज रहे हैं?",
        "FACT_NO_MATCH": "मुझे समझ नहीं आया आप किस व्यंजन की बात कर रहे हैं। कृपया स्पष्ट करें?",
        "BACK_TO_SEARCHING": "सभी रेस्तराँ खोजने पर वापस। आप क्या खोजना चाहते हैं?",
        "ALLERGEN_TAGGED_PREFIX": "एलर्जेन (टैग किए गए): {list}। ⚠️ टैग केवल मार्गदर्शन हैं; क्रॉस-संदूषण हो सकता है।",
        "ALLERGEN_NOT_TAGGED": "{dish} के लिए कोई एलर्जेन टैग नहीं किया गया। ⚠️ टैग केवल मार्गदर्शन हैं; क्रॉस-संदूषण हो सकता है।",
        "TAGS_GUIDANCE_DISCLAIMER": "⚠️ टैग केवल मार्गदर्शन हैं; क्रॉस-संदूषण हो सकता है।",
        "FOUND_RESULTS": "मुझे ये मिला:",
        "FOUND_TAGGED": "मुझे '{tag}' टैग वाले व्यंजन मिले:",
        "NO_RESULTS": "मुझे आपकी खोज के लिए कोई परिणाम नहीं मिला।",
        "NO_TAGGED_FALLBACK": "मुझे '{tag}' टैग वाले कोई व्यंजन नहीं मिले। यहाँ कुछ लोकप्रिय रेस्तराँ हैं:",
        "NO_MATCH_TRY_AGAIN": "मुझे कोई '{query}' नहीं मिला जो {tag} हो। कोई और खोज आज़माएँ?",
        "YES_PREFIX": "✅ हाँ —",
        "NO_PREFIX": "❌ नहीं —",
    },
    "pa": {
        "NO_CONTEXT_FOLLOWUP": "ਮੇਰੇ ਕੋਲ ਪਿਛਲੇ ਨਤੀਜੇ ਨਹੀਂ ਹਨ। ਤੁਸੀਂ ਕੀ ਲੱਭ ਰਹੇ ਹੋ?",
        "FACT_NO_MATCH": "ਮੈਨੂੰ ਸਮਝ ਨਹੀਂ ਆਇਆ ਤੁਸੀਂ ਕਿਹੜੇ ਪਕਵਾਨ ਦੀ ਗੱਲ ਕਰ ਰਹੇ ਹੋ। ਕਿਰਪਾ ਕਰਕੇ ਦੱਸੋ?",
        "BACK_TO_SEARCHING": "ਸਾਰੇ ਰੈਸਟੋਰੈਂਟਾਂ ਦੀ ਖੋਜ 'ਤੇ ਵਾਪਸ। ਤੁਸੀਂ ਕੀ ਲੱਭਣਾ ਚਾਹੁੰਦੇ ਹੋ?",
        "ALLERGEN_TAGGED_PREFIX": "ਐਲਰਜੀ (ਟੈਗ ਕੀਤੇ): {list}। ⚠️ ਟੈਗ ਸਿਰਫ਼ ਮਾਰਗਦਰਸ਼ਨ ਹਨ; ਕਰਾਸ-ਦੂਸ਼ਣ ਹੋ ਸਕਦਾ ਹੈ।",
        "ALLERGEN_NOT_TAGGED": "{dish} ਲਈ ਕੋਈ ਐਲਰਜੀ ਟੈਗ ਨਹੀਂ ਕੀਤਾ। ⚠️ ਟੈਗ ਸਿਰਫ਼ ਮਾਰਗਦਰਸ਼ਨ ਹਨ; ਕਰਾਸ-ਦੂਸ਼ਣ ਹੋ ਸਕਦਾ ਹੈ।",
        "TAGS_GUIDANCE_DISCLAIMER": "⚠️ ਟੈਗ ਸਿਰਫ਼ ਮਾਰਗਦਰਸ਼ਨ ਹਨ; ਕਰਾਸ-ਦੂਸ਼ਣ ਹੋ ਸਕਦਾ ਹੈ।",
        "FOUND_RESULTS": "ਮੈਨੂੰ ਇਹ ਮਿਲਿਆ:",
        "FOUND_TAGGED": "ਮੈਨੂੰ '{tag}' ਟੈਗ ਵਾਲੇ ਪਕਵਾਨ ਮਿਲੇ:",
        "NO_RESULTS": "ਮੈਨੂੰ ਤੁਹਾਡੀ ਖੋਜ ਲਈ ਕੋਈ ਨਤੀਜਾ ਨਹੀਂ ਮਿਲਿਆ।",
        "NO_TAGGED_FALLBACK": "ਮੈਨੂੰ '{tag}' ਟੈਗ ਵਾਲੇ ਕੋਈ ਪਕਵਾਨ ਨਹੀਂ ਮਿਲੇ। ਇੱਥੇ ਕੁਝ ਪ੍ਰਸਿੱਧ ਰੈਸਟੋਰੈਂਟ ਹਨ:",
        "NO_MATCH_TRY_AGAIN": "ਮੈਨੂੰ ਕੋਈ '{query}' ਨਹੀਂ ਮਿਲਿਆ ਜੋ {tag} ਹੋਵੇ। ਕੋਈ ਹੋਰ ਖੋਜ ਅਜ਼ਮਾਓ?",
        "YES_PREFIX": "✅ ਹਾਂ —",
        "NO_PREFIX": "❌ ਨਹੀਂ —",
    },
}


def is_supported_language(lang: str) -> bool:
    return (lang or "en").lower() in SUPPORTED_LANGUAGES


def t(key: str, lang: str = "en", **vars) -> str:
    """Look up ``key`` for ``lang``, falling back to English, then to ""."""
    table = _STRINGS.get((lang or "en").lower(), _STRINGS["en"])
    text = table.get(key) or _STRINGS["en"].get(key, "")
    for name, value in vars.items():
        text = text.replace(f"{{{name}}}", str(value))
    return text
