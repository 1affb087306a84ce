from behave import *

from zksync_multisig.bytecode import hash_bytecode

# Use regular expressions
use_step_matcher("re")


@when("I hash the bytecode and keep the header")
def when_hash_bytecode_header(context):
    try:
        context.output = hash_bytecode(context.input)[:4]
    except ValueError as e:
        context.output = e


@then("I should fail to hash the bytecode")
def then_fail_hash_bytecode(context):
    assert isinstance(context.output, ValueError)
