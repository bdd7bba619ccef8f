"""Minimal console chat on top of the session orchestrator."""

from chat_core.api import service


def _print_notifications(items):
    for n in items:
        print(f"[{n['level']}] {n['message']}")


if __name__ == "__main__":
    status = service.initialize()
    print("Model status:", status["status"], status["message"])
    if status["status"] != "ready":
        raise SystemExit(1)

    orchestrator = service.get_default_orchestrator()
    printed = {"id": None, "len": 0}

    def on_messages(messages):
        if not messages or messages[-1].role != "assistant":
            return
        last = messages[-1]
        if printed["id"] != last.id:
            printed["id"], printed["len"] = last.id, 0
        print(last.content[printed["len"]:], end="", flush=True)
        printed["len"] = len(last.content)
        if not last.is_streaming:
            print()

    orchestrator.messages.subscribe(on_messages, replay=False)
    print("Commands: /new, /list, /load <id>, /delete <id>, /quit")
    while True:
        try:
            line = input("You: ").strip()
        except EOFError:
            break
        if line == "/quit":
            break
        if line == "/new":
            _print_notifications(service.new_chat()["notifications"])
        elif line == "/list":
            for chat in service.list_chats():
                print(f"{chat['id']}  {chat['timestamp']}  {chat['title']}")
        elif line.startswith("/load "):
            _print_notifications(service.load_chat(line[6:].strip())["notifications"])
        elif line.startswith("/delete "):
            _print_notifications(service.delete_chat(line[8:].strip())["notifications"])
        else:
            print("Assistant: ", end="", flush=True)
            result = service.send_message(line)
            _print_notifications(result["notifications"])
            usage = result["usage"]
            print(f"(context {usage['usage']}/{usage['quota']})")
    service.reset()
