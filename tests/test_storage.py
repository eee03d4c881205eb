from storage import Memory, Queue, Stack


def test_memory_allocates_zero_cells():
    memory = Memory()
    assert memory.allocate(3) == 3
    assert memory.snapshot() == ["0", "0", "0"]
    assert memory.exists(2)
    assert not memory.exists(3)
    assert not memory.exists(-1)


def test_memory_set_and_get():
    memory = Memory()
    memory.allocate(2)
    memory.set(1, "x")
    assert memory.get(1) == "x"
    assert len(memory) == 2


def test_free_trims_from_the_tail():
    memory = Memory()
    memory.allocate(3)
    memory.set(0, "keep")
    memory.set(2, "drop")
    assert memory.free(1) == 1
    assert memory.snapshot() == ["keep", "0"]


def test_free_more_than_allocated_reports_what_was_removed():
    memory = Memory()
    memory.allocate(2)
    assert memory.free(5) == 2
    assert len(memory) == 0
    assert memory.free(1) == 0


def test_stack_is_lifo():
    stack = Stack()
    stack.push("a")
    stack.push("b")
    assert stack.pop() == "b"
    assert stack.pop() == "a"
    assert stack.pop() is None
    assert len(stack) == 0


def test_queue_is_fifo():
    queue = Queue()
    queue.push("a")
    queue.push("b")
    assert len(queue) == 2
    assert queue.pop() == "a"
    assert queue.pop() == "b"
    assert queue.pop() is None
