"""Test categories, their default weights and the static question banks."""

from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    RETRIEVAL = "retrieval"
    ACCURACY = "accuracy"
    CITATION = "citation"
    HALLUCINATION = "hallucination"
    OUT_OF_SCOPE = "out_of_scope"
    NO_ANSWER = "no_answer"
    CONSISTENCY = "consistency"
    MULTILINGUAL = "multilingual"


# Percent weights; enabled subsets are renormalised, see pipeline.distribution.
DEFAULT_CATEGORY_DISTRIBUTION: dict[Category, int] = {
    Category.RETRIEVAL: 25,
    Category.ACCURACY: 20,
    Category.CITATION: 15,
    Category.HALLUCINATION: 15,
    Category.OUT_OF_SCOPE: 10,
    Category.NO_ANSWER: 5,
    Category.CONSISTENCY: 5,
    Category.MULTILINGUAL: 5,
}

CATEGORY_INFO: dict[Category, dict[str, str]] = {
    Category.RETRIEVAL: {
        "label": "Retrieval",
        "description": "Does the bot find the right document for a question?",
    },
    Category.ACCURACY: {
        "label": "Accuracy",
        "description": "Is the answer factually correct and complete?",
    },
    Category.CITATION: {
        "label": "Citations",
        "description": "Does the bot cite the correct source document?",
    },
    Category.HALLUCINATION: {
        "label": "Hallucination",
        "description": "Does the bot admit when the documents do not contain the answer?",
    },
    Category.OUT_OF_SCOPE: {
        "label": "Out of scope",
        "description": "Does the bot decline questions outside its domain?",
    },
    Category.NO_ANSWER: {
        "label": "No answer",
        "description": "Does the bot defer personal questions to a human contact?",
    },
    Category.CONSISTENCY: {
        "label": "Consistency",
        "description": "Does the same question get the same answer each time?",
    },
    Category.MULTILINGUAL: {
        "label": "Multilingual",
        "description": "Does the bot answer correctly in the language it is asked in?",
    },
}

# Categories whose questions are synthesised from a corpus passage.
CONTENT_GROUNDED = frozenset({
    Category.RETRIEVAL,
    Category.ACCURACY,
    Category.CITATION,
    Category.HALLUCINATION,
    Category.CONSISTENCY,
})

CATEGORY_RECOMMENDATIONS: dict[Category, str] = {
    Category.RETRIEVAL: "Improve document indexing and embedding quality",
    Category.ACCURACY: "Review the system prompt for factual accuracy instructions",
    Category.CITATION: "Improve source attribution in answers",
    Category.HALLUCINATION: "Strengthen guardrails against unsupported claims",
    Category.OUT_OF_SCOPE: "Improve out-of-scope detection and refusal wording",
    Category.NO_ANSWER: "Route personal and account-specific questions to a human contact",
    Category.CONSISTENCY: "Lower answer temperature or tighten prompts for stable answers",
    Category.MULTILINGUAL: "Add multilingual documents or translate queries before retrieval",
}

LANGUAGE_NAMES: dict[str, str] = {
    "nl": "Dutch",
    "en": "English",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "pl": "Polish",
    "tr": "Turkish",
    "ar": "Arabic",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


OUT_OF_SCOPE_QUESTIONS: dict[str, list[str]] = {
    "nl": [
        "Wat wordt het weer morgen?",
        "Wie won de laatste Eredivisie?",
        "Wat is de hoofdstad van Australië?",
        "Hoe maak ik spaghetti carbonara?",
        "Wat is het laatste nieuws?",
        "Kun je een gedicht voor me schrijven?",
        "Wat is de aandelenkoers van Apple?",
        "Vertel een mop",
        "Wat is 2 + 2?",
        "Wie is de president van Amerika?",
    ],
    "en": [
        "What will the weather be like tomorrow?",
        "Who won the last World Cup?",
        "What is the capital of Australia?",
        "How do I make spaghetti carbonara?",
        "What is the latest news?",
        "Can you write a poem for me?",
        "What is Apple's stock price?",
        "Tell me a joke",
        "What is 2 + 2?",
        "Who is the president of America?",
    ],
    "de": [
        "Wie wird das Wetter morgen?",
        "Wer hat die letzte Bundesliga-Saison gewonnen?",
        "Was ist die Hauptstadt von Australien?",
        "Wie koche ich Spaghetti Carbonara?",
        "Was sind die neuesten Nachrichten?",
        "Kannst du mir ein Gedicht schreiben?",
        "Wie steht die Apple-Aktie?",
        "Erzähl mir einen Witz",
        "Was ist 2 + 2?",
        "Wer ist der Präsident von Amerika?",
    ],
}


def out_of_scope_bank(language: str) -> list[str]:
    """Fixed non-domain questions for a language, English when unknown."""
    return OUT_OF_SCOPE_QUESTIONS.get(language, OUT_OF_SCOPE_QUESTIONS["en"])
