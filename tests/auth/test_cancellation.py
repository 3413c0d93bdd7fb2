from serene.auth.cancellation import CancellationToken


def test_child_follows_parent():
    root = CancellationToken()
    child = root.child()
    grandchild = child.child()
    assert not grandchild.cancelled

    root.cancel("teardown")

    assert child.cancelled
    assert grandchild.cancelled
    assert root.reason == "teardown"


def test_cancelling_child_leaves_parent_alive():
    root = CancellationToken()
    child = root.child()
    child.cancel()
    assert child.cancelled
    assert not root.cancelled


def test_first_reason_wins():
    token = CancellationToken()
    token.cancel("sign_out")
    token.cancel("teardown")
    assert token.reason == "sign_out"
