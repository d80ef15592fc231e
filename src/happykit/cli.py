"""``hap`` — demonstration application built on happykit.

Exercises every lifecycle slot: a global before-always hook that waits
for the ``background`` service group, root hooks that log, a Do action
that blocks until the user closes the session, and the ``info`` command.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from happykit import __version__
from happykit.app import Application
from happykit.commands import info
from happykit.services import Service

if TYPE_CHECKING:
    from happykit.flags import Flags
    from happykit.session import Session


def background_service() -> Service:
    """Service started by the before-always hook through a loader."""
    svc = Service("background", description="Demo background service.")

    @svc.on_start
    def _start(session: Session) -> None:
        session.log.debug("background service started")

    @svc.on_stop
    def _stop(session: Session) -> None:
        session.log.debug("background service stopped")

    return svc


def build_app() -> Application:
    """Build the ``hap`` application without running it."""
    app = Application(
        "hap",
        name="Happy Prototype",
        version=__version__,
        description="Happy application lifecycle demo.",
        copyright_by="The Happy Authors",
        copyright_since=2023,
        license="Apache-2.0",
    )
    app.add_service(background_service())

    @app.before_always
    def _prepare(session: Session, flags: Flags) -> None:
        session.log.info("prepare happykit")
        for setting in session.profile.all():
            session.log.info(setting.key, value=str(setting.value))

        loader = session.service_loader("background")
        err = loader.wait()
        if err is not None:
            raise err

    @app.before
    def _before(session: Session, args: list[str]) -> None:
        session.log.info("main.before")

    @app.do
    def _do(session: Session, args: list[str]) -> None:
        session.log.info("main.do")
        session.user_closed().wait()
        session.log.info("main.do done")

    @app.after_success
    def _after_success(session: Session) -> None:
        session.log.info("main.after_success")

    @app.after_failure
    def _after_failure(session: Session, err: Exception) -> None:
        session.log.info("main.after_failure")

    @app.after_always
    def _after_always(session: Session, err: Exception | None) -> None:
        session.log.info("main.after_always")

    app.add_command(info())
    return app


def main() -> None:
    build_app().main()
