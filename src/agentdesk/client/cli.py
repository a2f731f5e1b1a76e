"""CLI client for the agentdesk API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    List,
    Tuple,
    cast,
)

import httpx

from agentdesk.common import (
    AnsiColors,
    colored_print,
)
from agentdesk.config import settings

logger = logging.getLogger(__name__)

COMMANDS = "Commands: /history, /clear, /agents, exit"


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message(prompt: str = "") -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input(prompt).strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


class ApiClient:
    """Thin synchronous wrapper over the HTTP API with retry on connection errors."""

    def __init__(
        self,
        base_url: str | None = None,
        max_retries: int = 5,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or f"http://localhost:{settings.API_PORT}"
        self.max_retries = max_retries
        self._transport = transport

    def request(
        self,
        method: str,
        endpoint: str,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any] | List[Any]:
        """Send a request and return the decoded JSON, or ``{"error": ...}`` on failure."""
        url = f"{self.base_url}{endpoint}"
        for attempt in range(self.max_retries):
            try:
                with httpx.Client(timeout=120.0, transport=self._transport) as client:
                    response = client.request(method, url, json=json, params=params)
            except httpx.ConnectError as exc:
                if attempt < self.max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)  # 0.5s, 1s, 2s, 4s...
                    logger.info(
                        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        self.max_retries,
                    )
                    time.sleep(retry_delay)
                    continue
                logger.error("API request error: %s", exc)
                return {"error": f"Error connecting to API: {exc}"}
            except httpx.HTTPError as exc:
                logger.error("API request error: %s", exc)
                return {"error": f"Error connecting to API: {exc}"}

            if response.is_error:
                try:
                    detail = response.json().get("detail", response.text)
                except ValueError:
                    detail = response.text
                return {"error": f"API error ({response.status_code}): {detail}"}
            return cast(Dict[str, Any], response.json())

        return {"error": f"Failed to connect to API after {self.max_retries} attempts"}

    # Convenience wrappers
    def list_agents(self, user_id: str) -> Dict[str, Any] | List[Any]:
        return self.request("GET", "/agents", params={"user_id": user_id})

    def create_agent(self, user_id: str, name: str, personality: str) -> Dict[str, Any] | List[Any]:
        payload = {"user_id": user_id, "name": name, "personality": personality or None}
        return self.request("POST", "/agents", json=payload)

    def chat(self, agent_id: str, user_id: str, message: str) -> Dict[str, Any] | List[Any]:
        payload = {"userId": user_id, "message": message}
        return self.request("POST", f"/agents/{agent_id}/chat", json=payload)

    def history(self, agent_id: str, user_id: str) -> Dict[str, Any] | List[Any]:
        return self.request("GET", f"/agents/{agent_id}/chat", params={"user_id": user_id})

    def clear(self, agent_id: str, user_id: str) -> Dict[str, Any] | List[Any]:
        return self.request("DELETE", f"/agents/{agent_id}/chat", params={"user_id": user_id})


def _show_error(response: Dict[str, Any] | List[Any]) -> bool:
    if isinstance(response, dict) and "error" in response:
        colored_print(response["error"], AnsiColors.RED)
        return True
    return False


def choose_agent(api: ApiClient, user_id: str) -> Dict[str, Any] | None:
    """List the user's agents and let them pick one, or create a new one."""
    agents = api.list_agents(user_id)
    if _show_error(agents):
        return None
    agents = cast(List[Dict[str, Any]], agents)

    for i, agent in enumerate(agents, start=1):
        colored_print(f"  {i}. {agent['emoji']} {agent['name']}", AnsiColors.YELLOW)
    colored_print(f"  {len(agents) + 1}. ➕ Create a new agent", AnsiColors.YELLOW)

    choice, ok = get_user_message("Pick an agent: ")
    if not ok:
        return None
    if choice.isdigit() and 1 <= int(choice) <= len(agents):
        return agents[int(choice) - 1]

    name, ok = get_user_message("Agent name: ")
    if not ok or not name:
        return None
    personality, _ = get_user_message("Personality (optional): ")
    created = api.create_agent(user_id, name, personality)
    if _show_error(created):
        return None
    return cast(Dict[str, Any], created)


def run_cli(api: ApiClient | None = None) -> None:
    """Run the CLI client that communicates with the API."""
    api = api or ApiClient()

    user_id, ok = get_user_message("Your user id: ")
    if not ok or not user_id:
        return

    agent = choose_agent(api, user_id)
    if agent is None:
        colored_print("⚠️ No agent selected", AnsiColors.RED)
        return

    colored_print(
        f"\n{agent['emoji']} Chatting with {agent['name']} - {COMMANDS} (or Ctrl+C)",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok or user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        if user_msg == "/agents":
            agent = choose_agent(api, user_id) or agent
            continue
        if user_msg == "/history":
            history = api.history(agent["id"], user_id)
            if not _show_error(history):
                for item in cast(Dict[str, Any], history).get("messages", []):
                    who = "You" if item["role"] == "user" else agent["name"]
                    colored_print(f"{who}: {item['content']}", AnsiColors.GREY)
            continue
        if user_msg == "/clear":
            cleared = api.clear(agent["id"], user_id)
            if not _show_error(cleared):
                colored_print("Conversation cleared.", AnsiColors.GREEN)
            continue

        response = api.chat(agent["id"], user_id, user_msg)
        if _show_error(response):
            continue
        response = cast(Dict[str, Any], response)
        colored_print(
            f"{response.get('agent_emoji', '🤖')} {response.get('agent_name', agent['name'])}: "
            f"{response.get('message', 'No response from API')}",
            AnsiColors.YELLOW,
        )


if __name__ == "__main__":
    run_cli()
