from messages import SILENT, Code, ConsoleInput, Level, Message, MessageSink


def test_message_format_includes_code_when_set():
    assert Message(Level.ERR, 3, "boom", 11).format() == "MRT ERR line 3: boom (code 11)"
    assert Message(Level.INF, 1, "Using extended mode", 0).format() == "MRT INF line 1: Using extended mode"


def test_sink_records_everything_but_writes_from_min_level():
    written = []
    sink = MessageSink(min_level=Level.WRN, writer=written.append)
    sink.emit(Level.INF, 1, "quiet")
    sink.emit(Level.WRN, 2, "loud", Code.UNKNOWN_VARIABLE)
    sink.emit(Level.ERR, 3, "louder", Code.DIVISION_BY_ZERO)
    assert len(sink.entries) == 3
    assert written == ["MRT WRN line 2: loud (code 12)", "MRT ERR line 3: louder (code 17)"]
    assert sink.codes == [12, 17]
    assert [m.text for m in sink.errors] == ["louder"]


def test_silent_sink_writes_nothing():
    written = []
    sink = MessageSink(min_level=SILENT, writer=written.append)
    sink.emit(Level.ERR, 1, "hidden", Code.INTERNAL)
    assert written == []
    assert sink.codes == [33]


def test_console_input_reads_through_reader():
    prompts = []

    def reader(prompt):
        prompts.append(prompt)
        return "Yes"

    console = ConsoleInput(reader)
    assert console.read_line("name? ") == "Yes"
    assert console.confirm("Continue?")
    assert prompts == ["name? ", "Continue? [y/n] "]


def test_console_input_treats_eof_as_empty():
    def reader(prompt):
        raise EOFError

    console = ConsoleInput(reader)
    assert console.read_line() == ""
    assert not console.confirm("Continue?")


def test_history_keeps_only_the_latest_messages():
    sink = MessageSink(min_level=SILENT, writer=lambda text: None, history=2)
    for number in range(1, 5):
        sink.emit(Level.INF, number, "tick")
    assert [m.line for m in sink.entries] == [3, 4]
