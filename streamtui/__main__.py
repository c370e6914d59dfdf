from streamtui.cli import main

main()
