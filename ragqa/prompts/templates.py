"""Prompt templates for question generation, answering and judging.

Generator prompts ask for a single JSON object. The judge prompt carries the
shared scoring rules; the per-category FOCUS blocks add the nuance each test
dimension needs.
"""

# ---------------------------------------------------------------------------
# Question generator
# ---------------------------------------------------------------------------

GENERATOR_SYSTEM = """\
You write test questions for a document-grounded chatbot that answers
employees' and customers' questions from an organisation's own documents.
Always answer with a single JSON object and nothing else.
"""

_GROUNDED_OUTPUT = """\
Return JSON:
{{
  "question": "the question, in {language_name}",
  "expected_answer": "the answer, quoted or closely paraphrased from the passage (max 2 sentences)",
  "key_facts": ["fact the answer MUST contain", "..."]
}}
"""

RETRIEVAL_TASK = """\
Write ONE question that tests whether the chatbot finds the right document.

PASSAGE:
{content}

SOURCE: {filename}, page {page}

The question must:
1. Be answerable directly from this passage
2. Be specific enough that only this document holds the answer
3. Be written in {language_name}

For expected_answer quote the passage literally where possible; use its exact
numbers, dates and terms, no interpretation.

""" + _GROUNDED_OUTPUT

ACCURACY_TASK = """\
Write ONE question that tests whether the chatbot reproduces facts correctly.

PASSAGE:
{content}

SOURCE: {filename}, page {page}

The question must:
1. Ask for specific details (numbers, dates, amounts, procedures)
2. Have a factual answer that can be verified against the passage
3. Be written in {language_name}

For expected_answer use the EXACT figures and terms from the passage.

""" + _GROUNDED_OUTPUT

CITATION_TASK = """\
Write ONE question that tests whether the chatbot cites its source.

PASSAGE:
{content}

SOURCE: {filename}

The question must:
1. Require an answer that points to this document
2. Ask something like "In which document can I find ..." or "Where is ... described?"
3. NOT ask for page numbers (they are often unavailable)
4. Be written in {language_name}

expected_answer must name the document {filename}.

""" + _GROUNDED_OUTPUT

HALLUCINATION_TASK = """\
Write ONE question on a topic that sounds like it belongs in this
organisation's documents but is most likely NOT covered by them. A good
chatbot should say it cannot find the answer.

For domain flavour only, here is an unrelated passage from the corpus:
{content}

Good examples of the style:
- "What is the policy for bringing pets to the office?"
- "How many parking spaces does the company have?"
- "What is the dress code for video calls?"

Avoid these already-used topics: {avoid}

Write the question in {language_name}. Return JSON:
{{"question": "the question", "topic": "two or three words naming the topic"}}
"""

NO_ANSWER_TASK = """\
Write {count} questions about PERSONAL, account-specific data that the
chatbot cannot know from general documentation: only a personnel or customer
system could answer them.

Style (first person, about the asker's own situation):
- "How many vacation days do I have left this year?"
- "What is my current salary?"
- "When does my contract end?"

Avoid general policy questions such as "How many vacation days does everyone
get?", which the documents can answer.

Every question must contain "I", "my" or "me" (or the {language_name}
equivalent) and be written in {language_name}. Return JSON:
{{"questions": ["question 1", "question 2"]}}
"""

TRANSLATE_TASK = """\
Rewrite this chatbot test question in {language_name}. Paraphrase naturally,
the way a native speaker would ask it; keep its meaning and specifics.

QUESTION: {question}
EXPECTED ANSWER: {expected_answer}

Return JSON:
{{"question": "the question in {language_name}", "expected_answer": "the expected answer in {language_name}"}}
"""

HALLUCINATION_EXPECTED = (
    "The chatbot should say the documents do not contain this information "
    "(or refer to a human contact) and must not invent specifics."
)
OUT_OF_SCOPE_EXPECTED = (
    "The chatbot should politely decline because the question is outside its "
    "domain, ideally pointing to a better source."
)
NO_ANSWER_EXPECTED = (
    "The chatbot should explain the general policy if available and refer the "
    "user to a human contact or the relevant system for their personal data."
)

# ---------------------------------------------------------------------------
# Answer (chatbot under test)
# ---------------------------------------------------------------------------

ANSWER_SYSTEM = """\
You are the organisation's document assistant. Answer ONLY from the context
below. If the context does not contain the answer, say so plainly and suggest
who to contact; never invent policies, numbers or dates. Mention the source
document for every fact you use. Answer in {language_name}.

CONTEXT:
{context}
"""

NO_CONTEXT = "(no relevant passages found)"

# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------

JUDGE_SYSTEM = """\
You are an honest QA evaluator for a document-grounded chatbot. Answer with a
single JSON object and nothing else.
"""

JUDGE_TASK = """\
QUESTION: {question}
EXPECTED ANSWER: {expected_answer}
CHATBOT ANSWER: {actual_answer}
CITED SOURCES: {citations}
CATEGORY: {category_label}
{extra_context}

EVALUATION PRINCIPLES:
1. Focus on the core content: does the answer contain the essential information?
2. Extra correct details are a bonus, never a penalty.
3. Only INCORRECT information or HALLUCINATIONS are errors.
4. If the expected answer lists [REQUIRED FACTS: ...], check that each is present.

SCORE BANDS:
- 90-100: core content correct; any extra information is also correct
- 70-89: correct with minor gaps or inaccuracies
- 50-69: partially correct, missing key facts or containing errors
- 0-49: incorrect, incomplete or hallucinated

HARD CAPS (apply regardless of fluency):
- Any invented, unsupported factual claim: score at most 20
- Wrong document or source cited: score at most 50
- Not answering although the answer was available: score at most 40

Always report these flags in category_specific, in addition to the category
fields: "hallucinated", "wrong_citation", "unanswered_but_available" (true/false).

Return JSON:
{{
  "score": <0-100>,
  "passed": <true if score >= 70>,
  "reasoning": "<1-2 sentences>",
  "issues": ["<short issue>", "..."],
  "category_specific": {category_fields}
}}
"""

JUDGE_FOCUS: dict[str, tuple[str, str]] = {
    "retrieval": (
        "FOCUS: Did the chatbot find the right document? Is the source correct?",
        '{"correct_document_found": true/false, "relevance_score": 0-100, ...flags}',
    ),
    "accuracy": (
        "FOCUS: Is the answer FACTUALLY correct? Do numbers, dates and procedures match?",
        '{"factually_correct": true/false, "completeness": 0-100, ...flags}',
    ),
    "citation": (
        """\
FOCUS: Does the chatbot point to the RIGHT document?
- 90-100: correct document named (with or without file extension) or the right section
- 70-89: right document with small name variations (spaces vs dashes, missing
  extension, missing page number); these count as CORRECT
- 0-50: wrong document, or no source given when one was expected
Judge whether the right document is meant, not exact string equality.""",
        '{"document_correct": true/false, "name_variation_acceptable": true/false, ...flags}',
    ),
    "hallucination": (
        """\
FOCUS: Does the chatbot invent information that is NOT in the documents?
- 80-100: says the documents do not cover it, admits uncertainty, refers to a
  human contact, or gives RELATED honest content while saying the specific
  answer is unavailable ("I found nothing on X, but Y says ..." is excellent)
- 0-20: answers with specifics as if they were fact while the documents do
  not contain them (invented policy, numbers, dates, procedures)
Semantically related retrieved content is NOT a hallucination.""",
        '{"hallucinated": true/false, "admitted_uncertainty": true/false, '
        '"found_related_content": true/false, ...flags}',
    ),
    "out_of_scope": (
        """\
FOCUS: Does the chatbot decline questions outside its domain?
- 90-100: declines politely, explains its role and suggests a better source
- 70-89: declines without a suggestion
- 40-69: partly helps but acknowledges the limitation
- 0-39: answers fully as if it were a normal question
Even a brief acknowledgement ("this is outside my scope, but ...") scores 50+.""",
        '{"refused_correctly": true/false, "gave_alternative": true/false, '
        '"partial_answer": true/false, ...flags}',
    ),
    "no_answer": (
        """\
FOCUS: The question asks for PERSONAL data (my balance, my contract, my status).
- 80-100: refers to a human contact or system for personal data, ideally while
  explaining the general policy
- 0-40: claims to know personal data, or refuses without any useful information
Explaining general policy and referring onwards is excellent (90+).""",
        '{"deferred_to_hr": true/false, "gave_general_policy": true/false, '
        '"claimed_personal_data": true/false, ...flags}',
    ),
    "consistency": (
        "FOCUS: Is this answer consistent with previous answers to the same question?\n"
        "PREVIOUS ANSWERS:\n{previous_answers}",
        '{"consistent_with_previous": true/false/null, ...flags}',
    ),
    "multilingual": (
        "FOCUS: Is the answer in the language of the question ({language_name})? "
        "Is the wording correct?",
        '{"correct_language": true/false, "translation_quality": 0-100, ...flags}',
    ),
}
