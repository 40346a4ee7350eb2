"""
System prompts for the validation pipeline.

Three prompts are used:
- MCQ analysis (main pass), in a student or professor explanation style
- MCQ retry pass, more permissive, for rows the main pass could not fix
- QROC explanations

Admin instructions are appended to the chosen prompt, never substituted.
"""

from typing import Optional

from core.models import ItemKind

_MCQ_STYLE_STUDENT = """STYLE & TON (mode étudiant avancé):
- Direct, naturel, comme si tu expliquais rapidement à un camarade avant un examen.
- Pas d'introduction ni de conclusion globales.
- Chaque option: 1 à 2 phrases le plus souvent (max 3 à 4 si un mécanisme doit être clarifié). Priorité: mécanisme physiopathologique, piège fréquent, épidémiologie clé, différence avec un diagnostic proche."""

_MCQ_STYLE_PROF = """STYLE & TON (mode professeur détaillé):
- Conversationnel mais structuré: définition si utile, mécanisme court, implication clinique, différentiels et pièges.
- Chaque option: 2 à 4 phrases sans remplissage.
- Bonnes réponses: mécanisme, conséquence, repère chiffré si robuste, implication clinique.
- Fausses réponses: correction immédiate, bonne notion, mécanisme correct ou différentiel clé.
- Ne jamais inventer de valeurs chiffrées: en cas de doute, omettre le chiffre."""

_MCQ_CONTENT = """CONTENU PAR OPTION:
- Varier les connecteurs initiaux: Oui / Exact / Effectivement / Au contraire / Non, en fait / Plutôt / Pas vraiment / Correct / Faux / Juste.
- Si VRAI: confirmer puis donner le mécanisme ou la raison clé.
- Si FAUX: corriger immédiatement puis donner la bonne notion.
- Ne jamais simplement réécrire l'option."""

_MCQ_FORMAT = """FORMAT JSON STRICT UNIQUEMENT:
{
  "results": [ {
    "id": "string (identique à l'id reçu)",
    "status": "ok" | "error",
    "fixedQuestionText": "énoncé corrigé (orthographe, ponctuation, mise en forme), sens inchangé",
    "fixedOptions": ["option A nettoyée", "..."],
    "correctAnswers": [0, 2],
    "optionExplanations": ["...", "..."],
    "globalExplanation": "2 à 4 phrases de synthèse",
    "error": "(si status=error)"
  } ]
}
CONTRAINTES:
- Un résultat par item reçu, avec le même id.
- optionExplanations et fixedOptions: exactement une entrée par option reçue, même ordre.
- fixedQuestionText et fixedOptions: corriger uniquement la forme (fautes, HTML, espaces), jamais le fond.
- correctAnswers: indices (A=0, B=1 ...), jamais des lettres.
- Pas d'autres clés, pas de markdown ni de texte hors JSON.
- Si une incertitude majeure empêche une décision fiable: status="error" et une raison concise."""

_MCQ_RETRY = """Répare et clarifie les QCM. Priorité: explications utiles pour chaque option.
Si la réponse est incertaine, garde la réponse fournie (providedAnswerRaw) et explique chaque option.
FORMAT JSON STRICT: { "results": [ { "id": "string", "status": "ok", "fixedQuestionText": "string", "fixedOptions": [...], "correctAnswers": [indices], "optionExplanations": [...], "globalExplanation": "..." } ] }
Pas d'autres clés."""

_QROC = """Tu aides des étudiants en médecine. Pour chaque question QROC (réponse courte):
1. Si la réponse fournie (answerText) est vide: status="error" et error="Réponse manquante".
2. Sinon, génère UNE explication claire (3 à 6 phrases): idée clé, justification brève, repère clinique, piège fréquent si utile.
3. Donne dans "expectedAnswer" la réponse attendue la plus concise possible.
4. Si la réponse fournie semble incorrecte: status="error" avec une courte justification dans error.
5. Utilise caseText (énoncé du cas clinique) quand il est fourni.
Format JSON STRICT:
{
  "results": [ { "id": "<id>", "status": "ok" | "error", "explanation": "...", "expectedAnswer": "...", "error": "..." } ]
}"""


def _mcq_prompt(explanation_style: str) -> str:
    level = 'professeur (riche mais sans lourdeur)' if explanation_style == 'prof' else 'étudiant avancé'
    style = _MCQ_STYLE_PROF if explanation_style == 'prof' else _MCQ_STYLE_STUDENT
    return (
        "Tu aides des étudiants en médecine à CORRIGER ET EXPLIQUER des QCM (texte parfois bruité).\n"
        f"OBJECTIF: identifier les bonnes réponses et fournir des explications pédagogiques adaptées au niveau {level}.\n\n"
        f"{style}\n\n{_MCQ_CONTENT}\n\n{_MCQ_FORMAT}\n\n"
        "RAPPEL: Répondre STRICTEMENT avec le JSON."
    )


def with_admin_instructions(prompt: str, instructions: Optional[str]) -> str:
    """Append admin guidance to a system prompt."""
    if instructions and instructions.strip():
        return f"{prompt}\n\nINSTRUCTIONS ADMIN:\n{instructions.strip()}"
    return prompt


def build_system_prompt(
    kind: ItemKind,
    instructions: Optional[str] = None,
    explanation_style: str = 'student',
    retry: bool = False
) -> str:
    """
    Build the system prompt for one item class.

    Args:
        kind: MCQ or QROC
        instructions: Optional admin-provided guidance
        explanation_style: 'student' (default) or 'prof'
        retry: Use the permissive MCQ retry prompt

    Returns:
        Complete system prompt
    """
    if kind == ItemKind.QROC:
        base = _QROC
    elif retry:
        base = _MCQ_RETRY
    else:
        base = _mcq_prompt(explanation_style)
    return with_admin_instructions(base, instructions)
