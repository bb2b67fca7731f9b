from annobroker.adapters.ui import RELOAD_PROMPT, CallbackReloadPolicy, StaticReloadPolicy
from annobroker.core.broker import Broker, FATAL_VERSION_MISMATCH


def test_configuration_error_halts_everything(broker, dispatcher, transport, reload_policy):
    first, second = [], []
    broker.submit({"action": "getDocument"}, first.append)
    broker.submit({"action": "getCollectionInformation"}, second.append, {"keep": True})

    transport.resolve(0, {"action": "getDocument", "exception": "configurationError",
                          "messages": [["Configuration error", "error", -1]]})
    assert broker.halted
    assert broker.pending_ids() == []
    assert dispatcher.count("screamingHalt") == 1
    # a halt does not stop the spinner
    assert dispatcher.count("unspin") == 0
    # only the version mismatch asks about reloading
    assert reload_policy.last_prompt is None

    transport.resolve(1, {"action": "getCollectionInformation", "messages": []})
    dispatcher.queue.run_pending()
    assert first == [] and second == []
    assert broker.pending == 0


def test_version_mismatch_declined_publishes_fatal(broker, dispatcher, transport, reload_policy):
    broker.submit({"action": "whoami"}, lambda r: None)
    transport.resolve(0, {"action": "whoami", "exception": "protocolVersionMismatch", "messages": []})

    assert reload_policy.last_prompt == RELOAD_PROMPT
    assert reload_policy.reloads == 0
    last = dispatcher.history("messages")[-1]
    assert last == ([FATAL_VERSION_MISMATCH],)
    assert FATAL_VERSION_MISMATCH == ("Fatal Error: Protocol version mismatch, please contact the administrator", "error", -1)


def test_version_mismatch_accepted_reloads(dispatcher, transport, waiter):
    policy = StaticReloadPolicy(accept=True)
    broker = Broker(dispatcher, transport, url="/ajax", waiter=waiter, reload_policy=policy)
    broker.submit({"action": "whoami"})
    transport.resolve(0, {"action": "whoami", "exception": "protocolVersionMismatch", "messages": []})

    assert policy.reloads == 1
    assert not any("Fatal Error" in m.text for (msgs,) in dispatcher.history("messages") for m in msgs)


def test_reload_decision_comes_from_injected_callables(dispatcher, transport):
    asked, reloaded = [], []
    policy = CallbackReloadPolicy(confirm=lambda prompt: asked.append(prompt) or True,
                                  reload=lambda: reloaded.append(True))
    broker = Broker(dispatcher, transport, url="/ajax", reload_policy=policy)
    broker.submit({"action": "whoami"})
    transport.resolve(0, {"action": "whoami", "exception": "protocolVersionMismatch", "messages": []})

    assert asked == [RELOAD_PROMPT]
    assert reloaded == [True]


def test_broker_keeps_working_after_halt(broker, dispatcher, transport):
    broker.submit({"action": "a"})
    transport.resolve(0, {"action": "a", "exception": "configurationError", "messages": []})

    got = []
    rid = broker.submit({"action": "b"}, got.append)
    assert rid == 1
    transport.resolve(1, {"action": "b", "messages": []})
    dispatcher.queue.run_pending()
    assert len(got) == 1


def test_brokers_are_independent(dispatcher, transport):
    from annobroker.adapters.transport import ManualTransport
    from annobroker.core.dispatcher import Dispatcher

    d2, t2 = Dispatcher(name="other"), ManualTransport()
    b1 = Broker(dispatcher, transport, url="/one")
    b2 = Broker(d2, t2, url="/two")

    b1.submit({"action": "x"})
    b2.submit({"action": "y"})
    transport.resolve(0, {"action": "x", "exception": "configurationError", "messages": []})

    assert b1.halted and not b2.halted
    assert b2.pending_ids() == [0]
    assert b2.submit({"action": "z"}) == 1
