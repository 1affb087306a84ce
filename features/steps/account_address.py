from behave import *

from zksync_multisig.account_address import AccountAddress
from zksync_multisig.secp256k1_ecdsa import PrivateKey

# Use regular expressions
use_step_matcher("re")


@when("I parse the account address")
def when_parse_account_address(context):
    try:
        context.output = AccountAddress.from_str(context.input)
    except Exception as e:
        context.output = e


@when("I convert the address to a string")
def when_account_address_to_string(context):
    context.output = str(context.input)


@when("I convert the address to padded bytes")
def when_account_address_to_padded(context):
    context.output = context.input.padded()


@when("I derive the address of the private key")
def when_derive_address(context):
    context.output = AccountAddress.from_key(PrivateKey.from_hex(context.input).public_key())


@then("I should fail to parse the account address")
def then_fail_account_address(context):
    assert isinstance(context.output, Exception)
