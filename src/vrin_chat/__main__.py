import asyncio
import signal
import sys

from dotenv import load_dotenv
from loguru import logger

from vrin_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from vrin_chat.bootstrap import bootstrap_runtime
from vrin_chat.shell import ChatShell


async def _run_turn(shell: ChatShell, text: str) -> None:
    # Ctrl-C interrupts the current turn instead of quitting.
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, shell.interrupt)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await shell.run(text)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    if not env.api_key:
        print(f"{env.api_key_env_var} environment variable is required.", file=sys.stderr)
        sys.exit(1)

    runtime = await bootstrap_runtime(app, env)
    shell = runtime.shell

    print("vrin-chat (type 'exit' to quit, '/help' for commands)")
    session = shell.client.session
    if session is not None:
        print(f"Resumed session: {session.session_id}")
    print(
        f"Mode: {shell.response_mode} | streaming: {'on' if shell.streaming_enabled else 'off'} | "
        f"web search: {'on' if shell.web_search_enabled else 'off'}"
    )
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                print()
                await _run_turn(shell, trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
