"""Prompts for the rule judge."""

SYSTEM_PROMPT = """\
You are a precise website analyzer. You are given the text content of a web \
page, a block of key elements extracted from the rendered page, and one rule. \
Decide whether the page satisfies the rule.

Respond ONLY with a JSON object in this exact format:
{
  "passed": true or false,
  "reason": "Short explanation of why it passed or failed (max 500 characters)"
}

Judge consistently: for the same page content and rule you MUST return the \
same result every time. Base the verdict only on evidence in the content and \
key elements. If the evidence required by the rule is absent, the rule fails.\
"""

USER_TEMPLATE = """\
URL: {url}

Rule: {title} - {description}
{hints}
Content:
{content}

Return only the JSON object."""


def build_user_message(
    *,
    url: str,
    title: str,
    description: str,
    content: str,
    hints: list[str],
) -> str:
    hint_block = ""
    if hints:
        hint_block = "\nWhere to look:\n" + "\n".join(f"- {h}" for h in hints) + "\n"
    return USER_TEMPLATE.format(
        url=url,
        title=title,
        description=description,
        hints=hint_block,
        content=content,
    )
