import os
import sys
import signal
import logging
import asyncio
from typing import Any, Dict, List, Optional, Tuple
from dotenv import load_dotenv
from system_prompt import SYSTEM_PROMPT

# Load environment variables from .env file
load_dotenv()


# Import agents SDK - required, no fallback
from agents import Agent, Runner
from agents.extensions.models.litellm_model import LitellmModel

from agents.tracing import set_tracing_disabled
set_tracing_disabled(True)


# Import tools and communicator
from figma_communicator import FigmaRelay, set_communicator
from figma_tools import build_figma_tools
from relay_config import RelayConfig
from relay_errors import RelayError

# Configure logging with INFO level (DEBUG was too verbose); stdout is reserved for answers
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='[%(asctime)s] [relay] [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%dT%H:%M:%S',
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit"}


class FigmaAgentSession:
    """Drives the agent from stdin prompts; tools reach Figma through one shared relay."""

    def __init__(self, config: RelayConfig, model: str, api_key: str):
        self.config = config
        self.relay = FigmaRelay(config)
        set_communicator(self.relay)

        tools = build_figma_tools()
        if not tools:
            logger.warning("⚠️ No tools discovered in figma_tools. Tools will be unavailable.")

        self.agent = Agent(
            name="FigmaRelay",
            instructions=SYSTEM_PROMPT,
            model=LitellmModel(model=model, api_key=api_key),
            tools=tools,
        )
        self._history: List[Dict[str, Any]] = []

        # Configure max turns for agent runs
        try:
            self.max_turns = int(os.getenv("AGENT_MAX_TURNS", "10"))
        except ValueError:
            self.max_turns = 10
        logger.info(f"🧮 Max turns configured: {self.max_turns}")

    async def _join_default_channel(self) -> None:
        channel = self.config.default_channel
        if not channel:
            logger.info("No default channel configured; the agent will ask for one")
            return
        try:
            await self.relay.join_channel(channel)
        except RelayError as e:
            # Not fatal: the agent can still join through the join_channel tool
            logger.warning(f"⚠️ Could not join default channel {channel}: {e}")

    async def handle_prompt(self, prompt: str) -> str:
        run_input = self._history + [{"role": "user", "content": prompt}]
        result = await Runner.run(self.agent, run_input, max_turns=self.max_turns)
        self._history = result.to_input_list()
        return str(result.final_output)

    async def run(self) -> None:
        await self._join_default_channel()
        loop = asyncio.get_running_loop()
        try:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                prompt = line.strip()
                if not prompt:
                    continue
                if prompt.lower() in EXIT_COMMANDS:
                    break
                logger.info(f"💬 Received user prompt: {prompt}")
                try:
                    answer = await self.handle_prompt(prompt)
                except Exception as e:
                    logger.error(f"❌ Agent run failed: {e}")
                    answer = f"I'm having trouble processing your request right now. Error: {e}"
                print(answer, flush=True)
        finally:
            await self.relay.close()
            set_communicator(None)
            logger.info("Relay closed")


def get_config() -> Tuple[RelayConfig, str, Optional[str]]:
    """Get configuration from environment variables or CLI args"""
    url = None
    channel = None
    model = os.getenv("LITELLM_MODEL", "gpt-4.1-nano")
    api_key = os.getenv("LITELLM_API_KEY")

    # Parse CLI args for overrides
    for arg in sys.argv[1:]:
        if arg.startswith("--channel="):
            channel = arg.split("=", 1)[1]
        elif arg.startswith("--url="):
            url = arg.split("=", 1)[1]
        elif arg.startswith("--model="):
            model = arg.split("=", 1)[1]
        elif arg.startswith("--api-key="):
            api_key = arg.split("=", 1)[1]

    config = RelayConfig.from_env(url=url, default_channel=channel)
    return config, model, api_key


def main():
    config, model, api_key = get_config()

    # Validate API key
    if not api_key:
        logger.error("LITELLM_API_KEY environment variable is required")
        sys.exit(1)

    logger.info("Starting Figma relay agent")
    logger.info(f"Relay URL: {config.url}")
    logger.info(f"Channel: {config.default_channel or '(none)'}")
    logger.info(f"LiteLLM Model: {model}")

    session = FigmaAgentSession(config, model, api_key)

    # SIGTERM unwinds through asyncio.run so the relay gets closed
    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(session.run())
    except KeyboardInterrupt:
        logger.info("Agent interrupted")


if __name__ == "__main__":
    main()
