"""
Media player interface.

The platform audio primitive is supplied by the host application. It reports
position, duration, ready state, playing state and completion back to the
SessionController through the controller's ``handle_*`` methods, from the
controller's event loop.
"""


class MediaPlayer:
    """Base interface for platform audio playback."""

    name: str = "base"

    def load(self, url: str, autoplay: bool, start_position: float = 0.0) -> None:
        """
        Replace the current item with ``url``.

        Args:
            url: Remote URL or local file path
            autoplay: Start playing as soon as the item is loaded
            start_position: Seconds to seek to before playback
        """
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def seek(self, position: float) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError
