from typing import List, Optional
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel, Field, PrivateAttr
from zoneinfo import ZoneInfo


def time_to_string(delta: timedelta) -> str:
    """Coarse human rendering of a duration, e.g. '3 minutes'"""

    seconds = max(int(delta.total_seconds()), 0)

    if seconds < 60:
        value, unit = seconds, "second"
    elif seconds < 3600:
        value, unit = seconds // 60, "minute"
    elif seconds < 86400:
        value, unit = seconds // 3600, "hour"
    else:
        value, unit = seconds // 86400, "day"

    suffix = "" if value == 1 else "s"
    return f"{value} {unit}{suffix}"


class TemplateVariables(BaseModel):
    """Placeholders substituted into persona text"""
    user: str
    bot: str
    time: str
    time_since: str

    def substitute(self, text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return (
            text.replace("{user}", self.user)
            .replace("{bot}", self.bot)
            .replace("{time}", self.time)
            .replace("{time_since}", self.time_since)
        )

    def substitute_all(self, items: Optional[List[str]]) -> Optional[List[str]]:
        if items is None:
            return None
        return [self.substitute(item) for item in items]


class SystemPromptBuilder(BaseModel):
    """Persona configuration rendered into the system preamble on every turn"""
    chatbot_name: str = "Assistant"
    user_name: str = "User"
    about: str = ""
    max_ltm: int = Field(10, ge=0, description="Recalled memories kept in the preamble")
    tone: Optional[str] = None
    age: Optional[str] = None
    likes: Optional[List[str]] = None
    dislikes: Optional[List[str]] = None
    history: Optional[str] = None
    conversation_goals: Optional[List[str]] = None
    conversational_examples: Optional[List[str]] = None
    context: Optional[List[str]] = None
    user_about: Optional[str] = None
    timezone: Optional[str] = Field(None, description="IANA zone name used for {time}")
    language: Optional[str] = None

    _long_term_memory: List[str] = PrivateAttr(default_factory=list)

    @property
    def long_term_memory(self) -> List[str]:
        return list(self._long_term_memory)

    def add_long_term_memories(self, memories: List[str]) -> None:
        """Append recalled memories, dropping the oldest beyond max_ltm"""

        for memory in memories:
            if memory not in self._long_term_memory:
                self._long_term_memory.append(memory)

        overflow = len(self._long_term_memory) - self.max_ltm
        if overflow > 0:
            del self._long_term_memory[:overflow]

    def clear_long_term_memories(self) -> None:
        self._long_term_memory.clear()

    def current_time(self) -> str:
        now = datetime.now(timezone.utc)
        if self.timezone:
            now = now.astimezone(ZoneInfo(self.timezone))
        return now.strftime("%Y-%m-%d %H:%M:%S %z")

    def build(self, time_since_last: timedelta) -> str:
        """Render the preamble for the current moment"""

        variables = TemplateVariables(
            user=self.user_name,
            bot=self.chatbot_name,
            time=self.current_time(),
            time_since=time_to_string(time_since_last)
        )

        sections: List[str] = [
            f"# Role: {self.chatbot_name}",
            (
                "## System Notes\n"
                f"- You are {self.chatbot_name}, talking to {self.user_name}.\n"
                "- Always refer to yourself in first person."
            ),
            f"## Time\n- Current time: {variables.time}\n- Time since last message: {variables.time_since}",
        ]

        language = variables.substitute(self.language)
        if language:
            sections.append(f"## Language\nOnly speak in the following language(s): {language}")

        sections.append(f"## About {self.chatbot_name}\n{variables.substitute(self.about)}")

        self._append(sections, "Tone", variables.substitute(self.tone))
        self._append(sections, "Age", variables.substitute(self.age))
        self._append(sections, "Likes", self._bullets(variables.substitute_all(self.likes)))
        self._append(sections, "Dislikes", self._bullets(variables.substitute_all(self.dislikes)))
        self._append(sections, "History", variables.substitute(self.history))
        self._append(sections, "Conversation Goals", self._bullets(variables.substitute_all(self.conversation_goals)))
        self._append(
            sections,
            "Conversational Examples",
            self._numbered("Example", "example", variables.substitute_all(self.conversational_examples))
        )
        self._append(sections, "Context", self._numbered("Context", "context", variables.substitute_all(self.context)))
        self._append(
            sections,
            "Long Term Memory",
            self._numbered("Memory", "memory", variables.substitute_all(self._long_term_memory))
        )

        user_about = variables.substitute(self.user_about)
        if user_about:
            sections.append(f"## {self.user_name}'s About\n{user_about}")

        return "\n\n".join(sections) + "\n"

    @staticmethod
    def _append(sections: List[str], header: str, content: Optional[str]) -> None:
        if content:
            sections.append(f"## {header}\n{content}")

    @staticmethod
    def _bullets(items: Optional[List[str]]) -> Optional[str]:
        if not items:
            return None
        return "\n".join(f"- {item}" for item in items)

    @staticmethod
    def _numbered(title: str, fence: str, items: Optional[List[str]]) -> Optional[str]:
        if not items:
            return None
        return "\n".join(
            f"### {title} {i}\n```{fence}\n{item}\n```"
            for i, item in enumerate(items, start=1)
        )
