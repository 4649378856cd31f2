"""
Message Templates & Variation Prompts
Built-in templates use {name} as the only placeholder.
"""

from dataclasses import dataclass
from typing import Optional


NAME_PLACEHOLDER = "{name}"
DEFAULT_NAME = "there"


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    text: str


BUILTIN_TEMPLATES = {
    t.id: t
    for t in (
        Template(
            id="default",
            name="Platform launch",
            text=(
                "Hi {name}, this is Rahul from Masters Up. We've just launched a new "
                "Masters preparation platform. Check mastersup.live to explore free resources!"
            ),
        ),
        Template(
            id="friendly",
            name="Friendly intro",
            text=(
                "Hey {name} 👋 Rahul here from Masters Up! Planning your Masters? "
                "Our new platform has everything in one place: mastersup.live 🎓"
            ),
        ),
        Template(
            id="follow_up",
            name="Follow-up",
            text=(
                "Hi {name}, just following up from Masters Up. Have you had a chance to "
                "look at mastersup.live yet? Happy to answer any questions."
            ),
        ),
    )
}


def get_builtin(template_id: Optional[str]) -> Optional[Template]:
    if not template_id:
        return None
    return BUILTIN_TEMPLATES.get(template_id)


def render(template_text: str, name: Optional[str]) -> str:
    """Substitute every {name} with the lead's name, or 'there'"""
    display_name = name.strip() if name and name.strip() else DEFAULT_NAME
    return template_text.replace(NAME_PLACEHOLDER, display_name)


VARIATION_PROMPT = """Rewrite the following WhatsApp message so it says the same thing in different words.
- Keep the same tone and roughly the same length
- Keep the same emojis in similar places
- Keep every link exactly as written
- Do not add greetings, signatures or new claims

Message:
{message}

Return ONLY the rewritten message text without any quotation marks or extra formatting."""


STRICT_VARIATION_PROMPT = """You are rewriting a message the sender wrote themselves. Produce ONE variation of it.
Rules (all mandatory):
- Preserve the exact tone, formality and personality of the original
- Preserve every emoji and keep it at the same position in the flow of the message
- Copy every URL, domain and link CHARACTER FOR CHARACTER, never shorten, reformat or drop one
- Keep line breaks and list formatting
- Stay within 10% of the original length
- Change the wording only; do not add or remove information

Original message:
{message}

Return ONLY the rewritten message text without any quotation marks or extra formatting."""


def variation_prompt(message: str, is_custom: bool) -> str:
    prompt = STRICT_VARIATION_PROMPT if is_custom else VARIATION_PROMPT
    return prompt.format(message=message)
