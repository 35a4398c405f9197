from proactornet.send_queue import SendQueue, TxFragment


def test_append_string_and_retrieve():
    q = SendQueue()
    s = b"hello"
    q.append(s)
    assert not q.is_empty()

    view = q.next_fragment()
    assert len(view) == len(s)
    assert bytes(view) == s

    q.retrieve(3)
    assert not q.is_empty()

    q.retrieve(2)
    assert q.is_empty()


def test_append_text_is_encoded():
    q = SendQueue()
    q.append("hello")
    assert bytes(q.next_fragment()) == b"hello"
    assert q.total_len == 5


def test_append_vector_and_cstring():
    q = SendQueue()
    q.append(bytearray(b"abc"))
    q.append(b"XY")

    views = q.batch(4)
    assert len(views) == 2
    assert len(views[0]) == 3
    assert bytes(views[0]) == b"abc"
    assert bytes(views[1]) == b"XY"

    q.retrieve(5)
    assert q.is_empty()


def test_partial_retrieve_keeps_state():
    q = SendQueue()
    q.append(b"abcdef")

    view = q.next_fragment()
    assert len(view) == 6
    q.retrieve(4)

    view2 = q.next_fragment()
    assert len(view2) == 2
    assert bytes(view2) == b"ef"

    q.retrieve(2)
    assert q.is_empty()


def test_batch_limit_respected():
    q = SendQueue()
    q.append(b"123")
    q.append(b"456")
    q.append(b"789")

    views = q.batch(2)
    assert len(views) == 2
    assert bytes(views[0]) == b"123"
    assert bytes(views[1]) == b"456"

    q.retrieve(6)
    assert not q.is_empty()

    views = q.batch(2)
    assert len(views) == 1
    assert bytes(views[0]) == b"789"
    q.retrieve(3)
    assert q.is_empty()


def test_next_fragment_on_empty_queue_is_none():
    q = SendQueue()
    assert q.next_fragment() is None
    assert q.batch(8) == []


def test_fragments_handed_out_once_until_retrieve():
    q = SendQueue()
    q.append(b"one")
    assert bytes(q.next_fragment()) == b"one"
    assert q.next_fragment() is None
    q.append(b"two")
    assert bytes(q.next_fragment()) == b"two"
    q.retrieve(0)
    assert [bytes(v) for v in q.batch(5)] == [b"one", b"two"]


def test_appended_data_is_copied():
    q = SendQueue()
    source = bytearray(b"abc")
    q.append(source)
    source[0] = ord("z")
    assert bytes(q.next_fragment()) == b"abc"


def test_retrieve_more_than_queued_stops_at_total():
    q = SendQueue()
    q.append(b"abc")
    q.retrieve(100)
    assert q.total_len == 0
    assert q.is_empty()


def test_tx_fragment_remaining_and_readable():
    frag = TxFragment(b"abcdef", written=2)
    assert frag.remaining() == 4
    assert bytes(frag.readable()) == b"cdef"