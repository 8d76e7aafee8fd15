from whep_player.events import EventHook


def test_unsubscribe_handle_removes_only_its_callback() -> None:
    hook: EventHook[int] = EventHook("numbers")
    first: list[int] = []
    second: list[int] = []
    unsubscribe = hook.subscribe(first.append)
    hook.subscribe(second.append)
    hook.emit(1)
    unsubscribe()
    unsubscribe()
    hook.emit(2)
    assert first == [1]
    assert second == [1, 2]
    assert len(hook) == 1


def test_callbacks_may_unsubscribe_while_emitting() -> None:
    hook: EventHook[str] = EventHook("once")
    seen: list[str] = []

    def _once(value: str) -> None:
        seen.append(value)
        unsubscribe()

    unsubscribe = hook.subscribe(_once)
    hook.emit("a")
    hook.emit("b")
    assert seen == ["a"]


def test_raising_callback_is_logged_and_others_still_run(caplog) -> None:
    hook: EventHook[int] = EventHook("numbers")
    seen: list[int] = []

    def _broken(value: int) -> None:
        raise ValueError("bad sink")

    hook.subscribe(_broken)
    hook.subscribe(seen.append)
    hook.emit(7)
    assert seen == [7]
    assert "Error in numbers event handler" in caplog.text
