"""Built-in CLI sub-commands for penfield.

* :mod:`~penfield.commands.login` -- device-flow login.
* :mod:`~penfield.commands.auth` -- inspect and refresh stored credentials.
* :mod:`~penfield.commands.serve` -- run the background refresh loop.
* :mod:`~penfield.commands.config` -- view and modify settings.

Multi-command groups export a :class:`typer.Typer` sub-application; single
commands export a plain callback registered directly on the root app.
"""
