"""In-page helper module injected into every served document.

Defines ``window.PageTest``: the readiness handshake with the harness plus the two event
synthesizers the interaction helpers call. Signals travel back to Python through the
``__pagetestSignal`` binding exposed by ScriptBridge; outside a harness (e.g. the page opened
in a normal browser) the binding is missing and signals are dropped.
"""

SIGNAL_BINDING = "__pagetestSignal"
CYCLE_GLOBAL = "__pagetestCycle"
LIBRARY_GLOBAL = "PageTest"

HELPER_SCRIPT = """
(() => {
    if (window.%(library)s) return;

    const state = { ready: false, deferred: false, failed: false };

    function signal(kind, payload) {
        const bridge = window.%(binding)s;
        if (typeof bridge !== 'function') return;
        bridge(kind, PageTest.cycle, payload === undefined ? null : payload);
    }

    const PageTest = {
        cycle: window.%(cycle)s || 0,

        isReady: function isReady() {
            return state.ready;
        },

        // Call during initialization to take over the ready signal, e.g. while
        // waiting on a download. The page must then call PageTest.ready() itself.
        defer: function defer() {
            state.deferred = true;
        },

        ready: function ready() {
            if (state.ready || state.failed) return;
            state.ready = true;
            signal('ready');
        },

        fail: function fail(message) {
            if (state.ready || state.failed) return;
            state.failed = true;
            signal('error', String(message));
        },

        trigger_keyboard_press: function trigger_keyboard_press(key, element) {
            element = element || document;
            const down = new KeyboardEvent('keydown', { key: key, code: key, bubbles: true });
            const up = new KeyboardEvent('keyup', { key: key, code: key, bubbles: true });
            element.dispatchEvent(down);
            element.dispatchEvent(up);
        },

        trigger_mouse_move: function trigger_mouse_move(position, element) {
            element = element || document.querySelector('canvas');
            if (!element) {
                throw new Error('trigger_mouse_move: no target given and no canvas element found');
            }
            const event = new MouseEvent('mousemove', {
                clientX: position[0],
                clientY: position[1],
                bubbles: true
            });
            element.dispatchEvent(event);
        }
    };

    window.%(library)s = PageTest;

    // Only errors raised before readiness count as initialization failures.
    window.addEventListener('error', (e) => {
        PageTest.fail(e.message || String(e.error));
    });
    window.addEventListener('unhandledrejection', (e) => {
        PageTest.fail('Unhandled promise rejection: ' + String(e.reason));
    });
    window.addEventListener('load', () => {
        if (!state.deferred) PageTest.ready();
    });
})();
""" % {"library": LIBRARY_GLOBAL, "binding": SIGNAL_BINDING, "cycle": CYCLE_GLOBAL}
