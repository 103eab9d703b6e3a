# technews/llm/prompts.py
"""
Prompts for item summaries and period digests.

Sources are French financial news and the output is read by French
speakers, so prompts and outputs are in French.
"""

from datetime import datetime

# Item body is truncated to this many characters in the summary prompt
SUMMARY_CONTENT_CHARS = 3000

SUMMARY_MAX_TOKENS = 500
SUMMARY_TEMPERATURE = 0.5


SUMMARY_SYSTEM_PROMPT = """Tu es un analyste financier expert spécialisé dans le secteur technologique.
Ta tâche est de résumer des articles de presse financière de manière claire et concise.

Pour chaque article, génère:
1. Un résumé court (2-3 phrases, max 150 caractères) pour une lecture rapide
2. Un résumé détaillé (1-2 paragraphes) avec les points clés et implications pour les investisseurs

Réponds en JSON avec ce format exact:
{
  "shortSummary": "Résumé court en 2-3 phrases",
  "detailedSummary": "Résumé détaillé avec analyse et implications"
}

Consignes:
- Utilise un ton professionnel et factuel
- Mentionne les entreprises et chiffres clés
- Indique les implications potentielles pour les investisseurs
- Écris en français"""


SUMMARY_USER_TEMPLATE = """Résume cet article:

Titre: {title}

Contenu:
{content}

Source: {source}
Date: {date}"""


def build_summary_prompt(title: str, body: str | None, source: str, published_at: datetime) -> str:
    content = (body or "").strip()[:SUMMARY_CONTENT_CHARS] or "(contenu indisponible, résume à partir du titre)"
    return SUMMARY_USER_TEMPLATE.format(
        title=title,
        content=content,
        source=source,
        date=published_at.strftime("%d/%m/%Y"),
    )


# -----------------------------------------------------------------------------
# Digests
# -----------------------------------------------------------------------------

DIGEST_TEMPERATURE = 0.3

DIGEST_MAX_TOKENS = {
    "day": 500,
    "week": 800,
    "month": 800,
}

_PERIOD_LABELS = {
    "day": "du jour",
    "week": "de la semaine",
    "month": "du mois",
}

_PERIOD_POINTS = {
    "day": "3-5",
    "week": "5-7",
    "month": "5-8",
}

DIGEST_SYSTEM_TEMPLATE = """Tu es un analyste financier expert. Génère un résumé exécutif des actualités tech/finance {label} en {points} points clés maximum.

Format attendu:
- Point clé 1
- Point clé 2
- Point clé 3

Sois concis, factuel et orienté business/investissement."""

DIGEST_USER_TEMPLATE = """Voici les {count} actualités tech/finance {label}:

{context}

Génère un résumé exécutif des points clés."""


def build_digest_prompts(kind: str, count: int, context: str) -> tuple[str, str]:
    """System and user prompt for a digest of `count` items."""
    label = _PERIOD_LABELS[kind]
    system_prompt = DIGEST_SYSTEM_TEMPLATE.format(label=label, points=_PERIOD_POINTS[kind])
    user_prompt = DIGEST_USER_TEMPLATE.format(count=count, label=label, context=context)
    return system_prompt, user_prompt
