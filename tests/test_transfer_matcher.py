from agentlink_gateway.chain import EventLog
from agentlink_gateway.transfers import (
    TRANSFER_EVENT_TOPIC,
    find_qualifying_transfer,
    format_units,
    topic_to_address,
)

from conftest import (
    OTHER_TOKEN,
    PAYER,
    PRICE,
    SELLER,
    STRANGER,
    TOKEN,
    make_receipt,
    pad_topic,
    transfer_log,
)


def test_transfer_topic_is_keccak_of_signature():
    assert TRANSFER_EVENT_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_topic_to_address_strips_padding():
    assert topic_to_address(pad_topic(SELLER)) == SELLER


def test_facilitator_mode_accepts_exact_price():
    log = transfer_log(PAYER, SELLER, PRICE)
    assert find_qualifying_transfer(make_receipt(log), TOKEN, PRICE, to=SELLER) == log


def test_amount_one_below_threshold_fails():
    receipt = make_receipt(transfer_log(PAYER, SELLER, PRICE - 1))
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is None


def test_amount_check_is_monotonic_and_arbitrary_precision():
    for amount in (PRICE, PRICE + 1, 10 ** 6, 2 ** 255, 10 ** 70):
        receipt = make_receipt(transfer_log(PAYER, SELLER, amount))
        assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is not None

    # A threshold beyond float precision still compares exactly.
    big = 2 ** 200
    assert find_qualifying_transfer(make_receipt(transfer_log(PAYER, SELLER, big - 1)), TOKEN, big, to=SELLER) is None
    assert find_qualifying_transfer(make_receipt(transfer_log(PAYER, SELLER, big)), TOKEN, big, to=SELLER) is not None


def test_logs_from_other_contracts_are_ignored():
    receipt = make_receipt(transfer_log(PAYER, SELLER, PRICE * 100, contract=OTHER_TOKEN))
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is None


def test_contract_address_compared_case_insensitively():
    checksum_like = "0x" + TOKEN[2:].upper()
    receipt = make_receipt(transfer_log(PAYER, SELLER, PRICE, contract=checksum_like))
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is not None


def test_non_transfer_events_and_wrong_topic_count_are_ignored():
    approval = EventLog(
        address=TOKEN,
        topics=("0x" + "11" * 32, pad_topic(PAYER), pad_topic(SELLER)),
        data="0x" + format(PRICE, "064x"),
    )
    four_topics = EventLog(
        address=TOKEN,
        topics=(TRANSFER_EVENT_TOPIC, pad_topic(PAYER), pad_topic(SELLER), "0x" + "00" * 32),
        data="0x" + format(PRICE, "064x"),
    )
    receipt = make_receipt(approval, four_topics)
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is None


def test_facilitator_mode_ignores_sender():
    receipt = make_receipt(transfer_log(STRANGER, SELLER, PRICE))
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is not None


def test_wrong_recipient_never_matches():
    receipt = make_receipt(transfer_log(PAYER, STRANGER, PRICE))
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=SELLER) is None


def test_direct_mode_requires_sender_and_recipient():
    good = make_receipt(transfer_log(PAYER, SELLER, PRICE))
    assert find_qualifying_transfer(good, TOKEN, PRICE, to=SELLER, from_=PAYER) is not None

    wrong_sender = make_receipt(transfer_log(STRANGER, SELLER, PRICE))
    assert find_qualifying_transfer(wrong_sender, TOKEN, PRICE, to=SELLER, from_=PAYER) is None

    wrong_recipient = make_receipt(transfer_log(PAYER, STRANGER, PRICE))
    assert find_qualifying_transfer(wrong_recipient, TOKEN, PRICE, to=SELLER, from_=PAYER) is None


def test_direct_mode_addresses_compared_case_insensitively():
    receipt = make_receipt(transfer_log(PAYER, SELLER, PRICE))
    upper_payer = "0x" + PAYER[2:].upper()
    upper_seller = "0x" + SELLER[2:].upper()
    assert find_qualifying_transfer(receipt, TOKEN, PRICE, to=upper_seller, from_=upper_payer) is not None


def test_only_first_structural_match_is_considered():
    short = transfer_log(PAYER, SELLER, PRICE - 1)
    enough = transfer_log(PAYER, SELLER, PRICE)
    assert find_qualifying_transfer(make_receipt(short, enough), TOKEN, PRICE, to=SELLER) is None

    # Unrelated logs before the transfer are skipped.
    noise = transfer_log(PAYER, STRANGER, PRICE * 10)
    assert find_qualifying_transfer(make_receipt(noise, enough), TOKEN, PRICE, to=SELLER) == enough


def test_malformed_amount_data_does_not_match():
    bad = EventLog(
        address=TOKEN,
        topics=(TRANSFER_EVENT_TOPIC, pad_topic(PAYER), pad_topic(SELLER)),
        data="0xnothex",
    )
    assert find_qualifying_transfer(make_receipt(bad), TOKEN, PRICE, to=SELLER) is None


def test_empty_data_counts_as_zero():
    empty = EventLog(
        address=TOKEN,
        topics=(TRANSFER_EVENT_TOPIC, pad_topic(PAYER), pad_topic(SELLER)),
        data="0x",
    )
    assert find_qualifying_transfer(make_receipt(empty), TOKEN, 1, to=SELLER) is None
    assert find_qualifying_transfer(make_receipt(empty), TOKEN, 0, to=SELLER) == empty


def test_format_units():
    assert format_units(10000, 6) == "0.010000"
    assert format_units(1_500_000, 6) == "1.500000"
