"""
Greets users with two buttons. Lives in disabled/ until an operator
enables it (POST /api/plugins/greeter/enable).
"""


async def greet(event, transport, config):
    if transport is not None:
        await transport.send_buttons(
            event,
            "Hello! Please select an option:",
            [("hi_button", "Hi!"), ("bye_button", "Bye!")],
        )


async def say_hi(event, transport, config):
    if transport is not None:
        await transport.reply(event, "Hi there!")


async def say_bye(event, transport, config):
    if transport is not None:
        await transport.reply(event, "Goodbye!")


info = {
    "name": "Greeter",
    "description": "Demonstrates button handlers",
    "category": "fun",
    "commands": [{"name": "greet", "description": "Send a greeting with buttons"}],
    "command_handlers": {"greet": greet},
    "buttonHandlers": {"hi_button": say_hi, "bye_button": say_bye},
}


async def handle(event, transport, config):
    return None
