import pytest

from cryptotxanalytics.analytics_engine import aggregate
from cryptotxanalytics.csv_normalizer import parse_import
from cryptotxanalytics.errors import InvalidFormat
from cryptotxanalytics.schemas import ClassifiedTransaction, Transaction, TxStatus, TxType
from cryptotxanalytics.tx_builder import (
    ImportHints,
    build_transaction,
    build_transactions,
    classify,
    explorer_record_to_input,
    resolve_status,
    transaction_from_input,
)

FALLBACK = "2024-06-01T00:00:00.000Z"

GNOSISSCAN_CSV = (
    "Txhash,Blockno,DateTime (UTC),From,To,Value_IN(EURe),Value_OUT(EURe),TxnFee(DAI),Status\n"
    "0xaaa,123,2024-01-15 10:30:00,0xsender,0xme,25.5,0,0.001,1\n"
)


def _build(row, **hints):
    return build_transaction(row, ImportHints(tx_id="t1", default_timestamp=FALLBACK, **hints))


def test_incoming_row_takes_token_from_header():
    rows = parse_import(GNOSISSCAN_CSV)
    [tx] = build_transactions(rows, ["t1"], default_timestamp=FALLBACK)

    assert type(tx) is Transaction
    assert tx.id == "t1"
    assert tx.tx_hash == "0xaaa"
    assert tx.block_number == "123"
    assert tx.timestamp == "2024-01-15T10:30:00.000Z"
    assert tx.from_address == "0xsender"
    assert tx.to_address == "0xme"
    assert tx.value_in.amount == 25.5
    assert tx.value_in.token == "EURe"
    assert tx.value_out is None
    assert tx.txn_fee.amount == 0.001
    assert tx.txn_fee.token == "DAI"
    assert tx.status == TxStatus.SUCCESS
    assert tx.historical_price is None
    assert tx.current_value is None
    assert tx.method is None


def test_tracked_address_yields_classified_entry():
    rows = parse_import(GNOSISSCAN_CSV)
    [tx] = build_transactions(rows, ["t1"], default_timestamp=FALLBACK, tracked_address="0xME")
    assert isinstance(tx, ClassifiedTransaction)
    assert tx.transaction_type == TxType.INCOME
    assert tx.signed_amount == 25.5


def test_symbol_column_beats_header_hint():
    row = {"From": "0xa", "To": "0xb", "Value_IN(EURe)": "3", "TokenSymbol": "USDC"}
    assert _build(row).value_in.token == "USDC"


def test_contract_address_is_the_token_of_last_resort():
    row = {"Value_IN": "3", "ContractAddress": "0xc0ffee"}
    tx = _build(row)
    assert tx.value_in.token == "0xc0ffee"
    assert tx.contract_address == "0xc0ffee"


def test_defaults_to_eth_and_never_reads_the_to_column_as_symbol():
    row = {"From": "0xme", "To": "0xshop", "Value_OUT": "2"}
    tx = _build(row)
    assert tx.value_out.token == "ETH"
    assert tx.contract_address is None


def test_swap_keeps_both_sides():
    row = {"Value_IN(EURe)": "10", "Value_OUT(USDC)": "11"}
    tx = _build(row)
    assert (tx.value_in.amount, tx.value_in.token) == (10.0, "EURe")
    assert (tx.value_out.amount, tx.value_out.token) == (11.0, "USDC")


def test_unparseable_values_become_absent():
    row = {"Value_IN": "n/a", "Value_OUT": "-4", "TxnFee": "unknown"}
    tx = _build(row)
    assert tx.value_in is None
    assert tx.value_out is None
    assert tx.txn_fee.amount == 0.0


def test_fee_token_detection():
    assert _build({"TxnFee": "0.5 DAI"}).txn_fee.token == "DAI"
    assert _build({"TxnFee": "0.5"}, default_fee_token="xDAI").txn_fee.token == "xDAI"
    assert _build({"TxnFee(USD)": "0.5"}).txn_fee.token == "USD"


def test_missing_timestamp_uses_default():
    assert _build({"Value_IN": "1"}).timestamp == FALLBACK


def test_prices_are_usd():
    row = {"Value_IN": "1", "Value_OUT": "", "Historical $Price/Eth": "2.5", "currentValue": "3"}
    tx = _build(row)
    assert tx.historical_price.amount == 2.5
    assert tx.historical_price.currency == "USD"
    assert tx.current_value.amount == 3.0


def test_full_gnosisscan_headers_keep_prices_off_the_address_columns():
    csv_text = (
        "Txhash,DateTime (UTC),From,To,Value_IN(EURe),Value_OUT(EURe),Historical $Price/Eth,Status\n"
        "0xb1,2024-01-15 10:30:00,0xbank,0xme,4,0,2.5,1\n"
    )
    [tx] = build_transactions(parse_import(csv_text), ["t1"], default_timestamp=FALLBACK)
    assert tx.to_address == "0xme"
    assert tx.historical_price.amount == 2.5
    assert tx.value_in.token == "EURe"


@pytest.mark.parametrize("header", ["amount", "value"])
def test_plain_amount_column_is_money_out(header):
    csv_text = f"hash,From,To,token,{header}\n0x1,0xme,0xshop,EURe,12.5\n"
    txs = build_transactions(parse_import(csv_text), ["t1"], default_timestamp=FALLBACK)
    [tx] = txs
    assert tx.value_in is None
    assert (tx.value_out.amount, tx.value_out.token) == (12.5, "EURe")
    assert aggregate(txs, "EURe").total_spent.amount == 12.5


def test_token_column_is_a_symbol_not_a_contract():
    tx = _build({"hash": "0x1", "token": "USDC", "amount": "3"})
    assert tx.contract_address is None
    assert tx.value_out.token == "USDC"


def test_symbol_and_asset_columns_set_the_token():
    assert _build({"symbol": "GBPe", "value": "1"}).value_out.token == "GBPe"
    assert _build({"asset": "EURe", "amountIn": "2"}).value_in.token == "EURe"


@pytest.mark.parametrize(
    "raw, status",
    [
        ("1", TxStatus.SUCCESS),
        ("success", TxStatus.SUCCESS),
        ("SUCCESS", TxStatus.SUCCESS),
        ("0", TxStatus.FAILED),
        ("Error(0)", TxStatus.FAILED),
        ("", TxStatus.FAILED),
        (None, TxStatus.FAILED),
    ],
)
def test_resolve_status(raw, status):
    assert resolve_status(raw) == status


def test_classify():
    assert classify("0xME", "0xshop", "0xme", None, 5.0) == (TxType.EXPENSE, -5.0)
    assert classify("0xbank", "0xme", "0xMe", 7.0, None) == (TxType.INCOME, 7.0)
    assert classify("0xme", "0xme", "0xme", 1.0, 1.0) == (TxType.NEUTRAL, 0.0)
    assert classify("0xa", "0xb", "0xme", 1.0, None) == (TxType.NEUTRAL, 0.0)


def test_too_few_ids_is_rejected_before_building():
    rows = parse_import(GNOSISSCAN_CSV + "0xbbb,124,2024-01-16 10:30:00,0xme,0xshop,0,4,0,1\n")
    with pytest.raises(InvalidFormat) as exc:
        build_transactions(rows, ["only-one"], default_timestamp=FALLBACK)
    assert "Not enough transaction IDs provided: 1 for 2 rows" in exc.value.message


def test_extra_ids_are_ignored():
    rows = parse_import(GNOSISSCAN_CSV)
    txs = build_transactions(rows, ["a", "b", "c"], default_timestamp=FALLBACK)
    assert [t.id for t in txs] == ["a"]


def test_transaction_from_input_plain():
    tx = transaction_from_input(
        {"id": "m1", "timestamp": "2024-02-01T00:00:00.000Z", "valueOut": {"amount": 5, "token": "EURe"}}
    )
    assert type(tx) is Transaction
    assert tx.value_out.amount == 5.0
    assert tx.txn_fee.amount == 0.0


def test_transaction_from_input_derives_signed_amount():
    tx = transaction_from_input(
        {
            "id": "m2",
            "timestamp": "2024-02-01T00:00:00.000Z",
            "valueOut": {"amount": 5, "token": "EURe"},
            "transactionType": "EXPENSE",
        }
    )
    assert isinstance(tx, ClassifiedTransaction)
    assert tx.signed_amount == -5.0


def test_transaction_from_input_keeps_explicit_signed_amount():
    tx = transaction_from_input(
        {
            "id": "m3",
            "timestamp": "2024-02-01T00:00:00.000Z",
            "valueIn": {"amount": 5, "token": "EURe"},
            "transactionType": "INCOME",
            "signedAmount": 4.5,
        }
    )
    assert tx.signed_amount == 4.5


def test_explorer_outgoing_record():
    record = {
        "hash": "0xh1",
        "blockNumber": "100",
        "timeStamp": "1705314600",
        "from": "0xME",
        "to": "0xshop",
        "contractAddress": "0xcafe",
        "value": "2500000000000000000",
        "tokenDecimal": "18",
        "tokenSymbol": "EURe",
        "gasUsed": "21000",
        "gasPrice": "1000000000",
        "functionName": "transfer(address,uint256)",
    }
    data = explorer_record_to_input(record, "0xme", "e1")

    assert data.id == "e1"
    assert data.timestamp == "2024-01-15T10:30:00.000Z"
    assert data.value_in is None
    assert data.value_out.amount == pytest.approx(2.5)
    assert data.value_out.token == "EURe"
    assert data.txn_fee.amount == pytest.approx(0.000021)
    assert data.txn_fee.token == "ETH"
    assert data.transaction_type == TxType.EXPENSE
    assert data.signed_amount == pytest.approx(-2.5)
    assert data.method == "transfer(address,uint256)"


def test_explorer_incoming_record_pays_no_gas():
    record = {
        "hash": "0xh2",
        "timeStamp": "1705314600",
        "from": "0xbank",
        "to": "0xme",
        "value": "1500000",
        "tokenDecimal": "6",
        "tokenName": "USD Coin",
        "gasUsed": "21000",
        "gasPrice": "1000000000",
    }
    data = explorer_record_to_input(record, "0xme", "e2")
    assert data.value_in.amount == pytest.approx(1.5)
    assert data.value_in.token == "USD Coin"
    assert data.txn_fee.amount == 0.0
    assert data.transaction_type == TxType.INCOME


def test_explorer_bad_decimals_default_to_18():
    record = {"from": "0xbank", "to": "0xme", "value": "1000000000000000000", "tokenDecimal": "abc"}
    data = explorer_record_to_input(record, "0xme", "e3")
    assert data.value_in.amount == pytest.approx(1.0)
    assert data.value_in.token == "UNKNOWN"
