from datetime import datetime, timezone

from order_lifecycle.domain.models import generate_order_number, new_order_id


def test_order_id_tail_is_a_counter():
    first, second = new_order_id(), new_order_id()

    assert len(first) == 24
    assert first[8:18] == second[8:18]
    assert int(second[-6:], 16) == (int(first[-6:], 16) + 1) % 0x1000000


def test_order_numbers_do_not_repeat_in_a_process():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    numbers = {generate_order_number(new_order_id(), "VT", now) for _ in range(20000)}

    assert len(numbers) == 20000
    assert all(number.startswith("VT-2026-") for number in numbers)
